"""
Tests for lifecycle_kernel.domain.sla -- pure deadline and status arithmetic.
"""

from datetime import datetime, timedelta, timezone

import pytest

from lifecycle_kernel.domain.sla import (
    SLAStatus,
    build_snapshot,
    compute_deadline,
    derive_status,
    hours_between,
)

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
WINDOW = timedelta(hours=2)


class TestComputeDeadline:
    def test_positive_hours(self):
        assert compute_deadline(NOW, 24) == NOW + timedelta(hours=24)

    def test_zero_hours_means_no_deadline(self):
        assert compute_deadline(NOW, 0) is None


class TestDeriveStatus:
    """Read-side classification of a live SLA record."""

    def test_no_record_is_completed(self):
        assert derive_status(None, False, NOW, WINDOW) is SLAStatus.COMPLETED

    def test_breached_flag_wins(self):
        deadline = NOW + timedelta(hours=10)
        assert derive_status(deadline, True, NOW, WINDOW) is SLAStatus.BREACHED

    def test_far_deadline_is_on_track(self):
        deadline = NOW + timedelta(hours=3)
        assert derive_status(deadline, False, NOW, WINDOW) is SLAStatus.ON_TRACK

    def test_deadline_inside_window_is_at_risk(self):
        deadline = NOW + timedelta(hours=1)
        assert derive_status(deadline, False, NOW, WINDOW) is SLAStatus.AT_RISK

    def test_window_boundary_is_at_risk(self):
        assert derive_status(NOW + WINDOW, False, NOW, WINDOW) is SLAStatus.AT_RISK

    def test_overdue_but_unswept_is_at_risk(self):
        deadline = NOW - timedelta(hours=1)
        assert derive_status(deadline, False, NOW, WINDOW) is SLAStatus.AT_RISK

    def test_window_is_configurable(self):
        deadline = NOW + timedelta(hours=3)
        assert derive_status(deadline, False, NOW, timedelta(hours=4)) is SLAStatus.AT_RISK


class TestSnapshot:
    def test_hours_rounded_to_one_decimal(self):
        assert hours_between(NOW, NOW + timedelta(minutes=100)) == 1.7

    def test_remaining_and_overdue_are_never_negative(self):
        overdue = build_snapshot("pending", NOW - timedelta(minutes=90), True, NOW, NOW, WINDOW)
        assert overdue.hours_overdue == 1.5
        assert overdue.hours_remaining == 0.0

        upcoming = build_snapshot("pending", NOW + timedelta(hours=5), False, None, NOW, WINDOW)
        assert upcoming.hours_remaining == 5.0
        assert upcoming.hours_overdue == 0.0
        assert upcoming.status is SLAStatus.ON_TRACK

    def test_completed_snapshot_is_empty(self):
        snap = build_snapshot(None, None, False, None, NOW, WINDOW)
        assert snap.to_dict() == {
            "status": "completed",
            "state": None,
            "deadline": None,
            "breached_at": None,
            "hours_remaining": None,
            "hours_overdue": None,
        }

    @pytest.mark.parametrize("minutes", [1, 29, 61, 119])
    def test_at_risk_snapshot_serializes_deadline(self, minutes):
        deadline = NOW + timedelta(minutes=minutes)
        snap = build_snapshot("confirmed", deadline, False, None, NOW, WINDOW)
        assert snap.status is SLAStatus.AT_RISK
        assert snap.to_dict()["deadline"] == deadline.isoformat()
