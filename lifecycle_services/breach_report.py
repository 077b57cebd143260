"""
BreachReportService -- SLA breach reporting with an optional fresh sweep.

Wraps ``SLASelector`` so a breached list can be made current: with
``sweep=True`` the SLATracker flags overdue records and commits before the
list is read.
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy.orm import Session

from lifecycle_kernel.domain.clock import Clock, SystemClock
from lifecycle_kernel.domain.definitions import DEFAULT_REGISTRY
from lifecycle_kernel.domain.sla import DEFAULT_AT_RISK_WINDOW
from lifecycle_kernel.domain.state_machine import StateMachineRegistry
from lifecycle_kernel.domain.states import Domain
from lifecycle_kernel.selectors.sla_selector import (
    AtRiskItem,
    BreachedItem,
    SLASelector,
    SLAStats,
)
from lifecycle_kernel.services.sla_tracker import SLATracker


class BreachReportService:
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        registry: StateMachineRegistry | None = None,
        at_risk_window: timedelta = DEFAULT_AT_RISK_WINDOW,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._tracker = SLATracker(session, self._clock, registry or DEFAULT_REGISTRY, at_risk_window)
        self._selector = SLASelector(session, self._clock, registry or DEFAULT_REGISTRY, at_risk_window)

    def sweep(self) -> int:
        """Flag overdue records and commit. Returns the number newly breached."""
        try:
            count = self._tracker.sweep_breaches(self._clock.now())
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return count

    def breached(
        self, domain: Domain | str | None = None, sweep: bool = True
    ) -> list[BreachedItem]:
        if sweep:
            self.sweep()
        return self._selector.list_breached(domain, self._clock.now())

    def at_risk(
        self, domain: Domain | str | None = None, window: timedelta | None = None
    ) -> list[AtRiskItem]:
        return self._selector.list_at_risk(domain, self._clock.now(), window)

    def stats(self, domain: Domain | str | None = None) -> SLAStats:
        return self._selector.sla_stats(domain, self._clock.now())
