"""
LifecycleRuntime -- wiring for a running process.

Builds the engine, the session factory and the OutboundDispatcher from
``LifecycleSettings`` once, and hands out coordinators bound to a caller's
session.  The single place where collaborators (notifier, billing) are
injected.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session, sessionmaker

from lifecycle_config import LifecycleSettings, log_level
from lifecycle_kernel.db.engine import get_session_factory, init_engine_from_url
from lifecycle_kernel.db.immutability import register_immutability_listeners
from lifecycle_kernel.domain.clock import Clock, SystemClock
from lifecycle_kernel.domain.definitions import DEFAULT_REGISTRY
from lifecycle_kernel.logging_config import configure_logging
from lifecycle_services.breach_report import BreachReportService
from lifecycle_services.handlers import default_handlers
from lifecycle_services.order_workflow import OrderWorkflow
from lifecycle_services.outbound_dispatcher import OutboundDispatcher
from lifecycle_services.ports import (
    BillingPort,
    LoggingBilling,
    LoggingNotifier,
    NotificationPort,
)
from lifecycle_services.return_workflow import ReturnWorkflow
from lifecycle_services.shipment_workflow import ShipmentWorkflow


class LifecycleRuntime:
    """Process-wide composition root.

    Contract:
        ``from_settings`` initializes the database engine and logging;
        ``orders(session)`` / ``returns(session)`` / ``shipments(session)``
        build coordinators sharing one dispatcher and clock.
    """

    def __init__(
        self,
        settings: LifecycleSettings,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        notifier: NotificationPort | None = None,
        billing: BillingPort | None = None,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.registry = DEFAULT_REGISTRY
        self.at_risk_window = settings.sla.at_risk_window
        self.dispatcher = OutboundDispatcher(
            session_factory,
            default_handlers(
                notifier or LoggingNotifier(),
                billing or LoggingBilling(),
                clock=self.clock,
                registry=self.registry,
            ),
            clock=self.clock,
            max_attempts=settings.outbound.max_attempts,
            workers=settings.outbound.workers,
            synchronous=settings.outbound.synchronous,
        )

    @classmethod
    def from_settings(
        cls,
        settings: LifecycleSettings,
        clock: Clock | None = None,
        notifier: NotificationPort | None = None,
        billing: BillingPort | None = None,
    ) -> LifecycleRuntime:
        logging.getLogger("lifecycle_kernel").setLevel(log_level(settings))
        configure_logging(level=log_level(settings))
        init_engine_from_url(settings.database.url, echo=settings.database.echo)
        register_immutability_listeners()
        return cls(settings, get_session_factory(), clock, notifier, billing)

    def _kwargs(self) -> dict:
        return {
            "clock": self.clock,
            "registry": self.registry,
            "dispatcher": self.dispatcher,
            "at_risk_window": self.at_risk_window,
        }

    def orders(self, session: Session) -> OrderWorkflow:
        return OrderWorkflow(session, **self._kwargs())

    def returns(self, session: Session) -> ReturnWorkflow:
        return ReturnWorkflow(session, **self._kwargs())

    def shipments(self, session: Session) -> ShipmentWorkflow:
        return ShipmentWorkflow(session, **self._kwargs())

    def breach_report(self, session: Session) -> BreachReportService:
        return BreachReportService(
            session, self.clock, self.registry, self.at_risk_window
        )

    def shutdown(self) -> None:
        self.dispatcher.shutdown(wait=True)
