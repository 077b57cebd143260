"""
Tests for SLATracker -- deadline upsert, zero-SLA clearing and breach sweeps.
"""

from datetime import timedelta

from lifecycle_kernel.domain.sla import SLAStatus
from lifecycle_kernel.models.sla_record import SLARecord
from lifecycle_kernel.services.sla_tracker import SLATracker
from sqlalchemy import func, select


def _record_count(session) -> int:
    return session.execute(select(func.count()).select_from(SLARecord)).scalar_one()


class TestUpsert:
    """One live record per entity, replaced in place."""

    def test_creation_opens_deadline(self, transition_engine, session, admin, deterministic_clock):
        created = transition_engine.create_entity("order", "ORD-1", admin)

        record = SLATracker(session).get_record(created.entity_id)
        assert record.current_state == "pending"
        assert record.deadline == deterministic_clock.now() + timedelta(hours=2)
        assert record.is_breached is False

    def test_transition_replaces_record_in_place(
        self, transition_engine, session, admin, deterministic_clock
    ):
        created = transition_engine.create_entity("order", "ORD-2", admin)
        tracker = SLATracker(session, deterministic_clock)
        record_id = tracker.get_record(created.entity_id).id

        deterministic_clock.advance_hours(1)
        transition_engine.attempt_transition(created.entity_id, "order", "confirmed", admin)

        record = tracker.get_record(created.entity_id)
        assert record.id == record_id
        assert record.current_state == "confirmed"
        assert record.deadline == deterministic_clock.now() + timedelta(hours=4)
        assert _record_count(session) == 1

    def test_zero_sla_state_deletes_record(self, transition_engine, session, admin):
        created = transition_engine.create_entity("order", "ORD-3", admin)
        transition_engine.attempt_transition(created.entity_id, "order", "cancelled", admin)

        tracker = SLATracker(session)
        assert tracker.get_record(created.entity_id) is None
        assert tracker.status_for(created.entity_id).status is SLAStatus.COMPLETED

    def test_transition_clears_breach(
        self, transition_engine, session, admin, deterministic_clock
    ):
        created = transition_engine.create_entity("order", "ORD-4", admin)
        tracker = SLATracker(session, deterministic_clock)
        deterministic_clock.advance_hours(3)
        tracker.sweep_breaches()
        session.commit()
        assert tracker.get_record(created.entity_id).is_breached is True

        transition_engine.attempt_transition(created.entity_id, "order", "confirmed", admin)

        record = tracker.get_record(created.entity_id)
        assert record.is_breached is False
        assert record.breached_at is None


class TestSweep:
    """Sweeps flag overdue records once and never unflag them."""

    def test_sweep_flags_only_overdue(
        self, transition_engine, session, admin, deterministic_clock
    ):
        order = transition_engine.create_entity("order", "ORD-5", admin)
        shipment = transition_engine.create_entity("shipment", "SHP-5", admin)

        deterministic_clock.advance_hours(3)
        tracker = SLATracker(session, deterministic_clock)
        assert tracker.sweep_breaches() == 1
        session.commit()

        breached = tracker.get_record(order.entity_id)
        assert breached.is_breached is True
        assert breached.breached_at == deterministic_clock.now()
        assert tracker.get_record(shipment.entity_id).is_breached is False

    def test_sweep_is_idempotent(self, transition_engine, session, admin, deterministic_clock):
        created = transition_engine.create_entity("order", "ORD-6", admin)
        tracker = SLATracker(session, deterministic_clock)

        deterministic_clock.advance_hours(3)
        assert tracker.sweep_breaches() == 1
        first_flagged_at = tracker.get_record(created.entity_id).breached_at

        deterministic_clock.advance_hours(5)
        assert tracker.sweep_breaches() == 0
        assert tracker.get_record(created.entity_id).breached_at == first_flagged_at

    def test_deadline_exactly_now_is_not_breached(
        self, transition_engine, session, admin, deterministic_clock
    ):
        transition_engine.create_entity("order", "ORD-7", admin)
        deterministic_clock.advance_hours(2)

        assert SLATracker(session, deterministic_clock).sweep_breaches() == 0

    def test_status_for_reports_breach(
        self, transition_engine, session, admin, deterministic_clock
    ):
        created = transition_engine.create_entity("order", "ORD-8", admin)
        tracker = SLATracker(session, deterministic_clock)

        deterministic_clock.advance_hours(1)
        assert tracker.status_for(created.entity_id).status is SLAStatus.AT_RISK

        deterministic_clock.advance_hours(2)
        assert tracker.status_for(created.entity_id).status is SLAStatus.AT_RISK
        tracker.sweep_breaches()
        snap = tracker.status_for(created.entity_id)
        assert snap.status is SLAStatus.BREACHED
        assert snap.hours_overdue == 1.0
