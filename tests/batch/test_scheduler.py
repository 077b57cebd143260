"""
Tests for SweepScheduler -- tick behaviour, failure isolation, outbound
retries and start/stop lifecycle.
"""

import pytest

from lifecycle_batch.scheduler import SweepScheduler
from lifecycle_kernel.models.outbound_event import OutboundEvent, OutboundStatus
from lifecycle_kernel.services.sla_tracker import SLATracker
from lifecycle_services.handlers import OutboundHandler
from lifecycle_services.outbound_dispatcher import OutboundDispatcher


class _FailOnce(OutboundHandler):
    name = "fail_once"

    def __init__(self):
        self.calls = 0

    def handle(self, session, message):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("first delivery fails")
        return []


@pytest.fixture
def scheduler(session_factory, deterministic_clock):
    s = SweepScheduler(session_factory, clock=deterministic_clock, tick_interval_seconds=0.05)
    yield s
    s.stop(timeout=2.0)


# =============================================================================
# tick()
# =============================================================================


class TestTick:
    def test_tick_with_nothing_due_returns_zero(self, scheduler):
        assert scheduler.tick() == 0

    def test_tick_flags_overdue_records(
        self, scheduler, transition_engine, session, admin, deterministic_clock
    ):
        created = transition_engine.create_entity("order", "ORD-1", admin)
        deterministic_clock.advance_hours(3)

        assert scheduler.tick() == 1
        assert scheduler.tick() == 0
        assert SLATracker(session).get_record(created.entity_id).is_breached is True

    def test_tick_failure_is_contained(
        self, scheduler, transition_engine, admin, deterministic_clock, monkeypatch, captured_logs
    ):
        transition_engine.create_entity("order", "ORD-2", admin)
        deterministic_clock.advance_hours(3)

        def boom(self, now=None):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(SLATracker, "sweep_breaches", boom)

        assert scheduler.tick() == 0
        assert any(r["message"] == "scheduler_tick_failed" for r in captured_logs())

    def test_tick_retries_failed_outbound(
        self, session_factory, session, transition_engine, admin, deterministic_clock
    ):
        handler = _FailOnce()
        dispatcher = OutboundDispatcher(
            session_factory, [handler], clock=deterministic_clock, synchronous=True
        )
        created = transition_engine.create_entity("order", "ORD-3", admin)
        assert dispatcher.deliver(created.outbound_id) is OutboundStatus.FAILED

        scheduler = SweepScheduler(
            session_factory, clock=deterministic_clock, dispatcher=dispatcher
        )
        scheduler.tick()

        row = session.get(OutboundEvent, created.outbound_id, populate_existing=True)
        assert row.status == OutboundStatus.DISPATCHED.value
        assert handler.calls == 2


# =============================================================================
# start() / stop() lifecycle
# =============================================================================


class TestLifecycle:
    def test_start_creates_background_thread(self, scheduler):
        scheduler.start()
        assert scheduler.is_running is True
        scheduler.stop(timeout=2.0)
        assert scheduler.is_running is False

    def test_double_start_is_noop(self, scheduler):
        scheduler.start()
        thread = scheduler._worker
        scheduler.start()
        assert scheduler._worker is thread
        scheduler.stop(timeout=2.0)

    def test_stop_without_start_is_safe(self, scheduler):
        scheduler.stop(timeout=1.0)
        assert scheduler.is_running is False
