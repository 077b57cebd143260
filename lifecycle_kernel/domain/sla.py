"""
Pure SLA computations: deadlines and derived read-side status.

Nothing here is persisted.  ``derive_status`` classifies a live SLA record
(or its absence) relative to ``now`` and a configurable at-risk window.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

DEFAULT_AT_RISK_WINDOW = timedelta(hours=2)


class SLAStatus(str, Enum):
    """Derived SLA classification."""

    BREACHED = "breached"
    AT_RISK = "at_risk"
    ON_TRACK = "on_track"
    COMPLETED = "completed"  # no live record: terminal or deadline-free state


@dataclass(frozen=True)
class SLASnapshot:
    """Read-side view of an entity's SLA position."""

    status: SLAStatus
    state: str | None = None
    deadline: datetime | None = None
    breached_at: datetime | None = None
    hours_remaining: float | None = None
    hours_overdue: float | None = None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "state": self.state,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "breached_at": self.breached_at.isoformat() if self.breached_at else None,
            "hours_remaining": self.hours_remaining,
            "hours_overdue": self.hours_overdue,
        }


def compute_deadline(now: datetime, sla_hours: int) -> datetime | None:
    """Deadline owed for a state entered at ``now``; None when deadline-free."""
    if sla_hours <= 0:
        return None
    return now + timedelta(hours=sla_hours)


def hours_between(start: datetime, end: datetime) -> float:
    """Signed hours from start to end, rounded to one decimal."""
    return round((end - start).total_seconds() / 3600, 1)


def derive_status(
    deadline: datetime | None,
    is_breached: bool,
    now: datetime,
    window: timedelta = DEFAULT_AT_RISK_WINDOW,
) -> SLAStatus:
    """
    Classify an SLA record.

    A record that is overdue but not yet flagged by a sweep is reported as
    at-risk; only the sweep makes a record breached.
    """
    if deadline is None:
        return SLAStatus.COMPLETED
    if is_breached:
        return SLAStatus.BREACHED
    if deadline <= now + window:
        return SLAStatus.AT_RISK
    return SLAStatus.ON_TRACK


def build_snapshot(
    state: str | None,
    deadline: datetime | None,
    is_breached: bool,
    breached_at: datetime | None,
    now: datetime,
    window: timedelta = DEFAULT_AT_RISK_WINDOW,
) -> SLASnapshot:
    status = derive_status(deadline, is_breached, now, window)
    if status is SLAStatus.COMPLETED:
        return SLASnapshot(status=status)
    remaining = hours_between(now, deadline)
    return SLASnapshot(
        status=status,
        state=state,
        deadline=deadline,
        breached_at=breached_at,
        hours_remaining=max(0.0, remaining),
        hours_overdue=max(0.0, -remaining),
    )
