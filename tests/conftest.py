"""
Pytest fixtures for the lifecycle kernel test suite.

Provides:
- A fresh in-memory SQLite database per test (StaticPool, tables created,
  integrity listeners registered)
- Session, session factory and deterministic clock
- Coordinators wired to a synchronous OutboundDispatcher with recording
  collaborators
- Structured log capture

PostgreSQL-only behaviour (row locks) is exercised through the version
compare-and-swap, which SQLite enforces as well.
"""

import json
import logging
from io import StringIO
from typing import Generator
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from lifecycle_kernel.db.engine import build_engine, create_tables
from lifecycle_kernel.domain.clock import DeterministicClock
from lifecycle_kernel.domain.dtos import Actor
from lifecycle_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from lifecycle_kernel.services.transition_engine import TransitionEngine
from lifecycle_services.handlers import default_handlers
from lifecycle_services.order_workflow import OrderWorkflow
from lifecycle_services.outbound_dispatcher import OutboundDispatcher
from lifecycle_services.ports import RecordingBilling, RecordingNotifier
from lifecycle_services.return_workflow import ReturnWorkflow
from lifecycle_services.shipment_workflow import ShipmentWorkflow


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Enable structured logging for the entire test session."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture lifecycle_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.attempt_transition(...)
            logs = captured_logs()
            assert any(r["message"] == "transition_committed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("lifecycle_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine():
    eng = build_engine("sqlite:///:memory:")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    s = session_factory()
    try:
        yield s
    finally:
        s.rollback()
        s.close()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


# =============================================================================
# Kernel + services
# =============================================================================


@pytest.fixture
def admin() -> Actor:
    return Actor.admin("admin-1", "ops@example.com")


@pytest.fixture
def customer_id() -> str:
    return "customer-42"


@pytest.fixture
def transition_engine(session, deterministic_clock) -> TransitionEngine:
    return TransitionEngine(session, clock=deterministic_clock)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def billing() -> RecordingBilling:
    return RecordingBilling()


@pytest.fixture
def dispatcher(session_factory, deterministic_clock, notifier, billing):
    d = OutboundDispatcher(
        session_factory,
        default_handlers(notifier, billing, clock=deterministic_clock),
        clock=deterministic_clock,
        max_attempts=3,
        synchronous=True,
    )
    yield d
    d.shutdown()


@pytest.fixture
def orders(session, deterministic_clock, dispatcher) -> OrderWorkflow:
    return OrderWorkflow(session, clock=deterministic_clock, dispatcher=dispatcher)


@pytest.fixture
def returns(session, deterministic_clock, dispatcher) -> ReturnWorkflow:
    return ReturnWorkflow(session, clock=deterministic_clock, dispatcher=dispatcher)


@pytest.fixture
def shipments(session, deterministic_clock, dispatcher) -> ShipmentWorkflow:
    return ShipmentWorkflow(session, clock=deterministic_clock, dispatcher=dispatcher)


@pytest.fixture
def make_order(orders, customer_id):
    """Factory: create an order and walk it through ``states`` as admin."""

    def _make(*states: str, owner: str | None = None):
        created = orders.create_order(f"ORD-{uuid4().hex[:8]}", owner or customer_id)
        order_id = created.entity_id
        for state in states:
            orders.transition(order_id, state, Actor.admin("admin-1")).raise_for_status()
        return order_id

    return _make
