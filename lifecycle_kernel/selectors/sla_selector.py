"""
Module: lifecycle_kernel.selectors.sla_selector
Responsibility: Breach reporting.  Lists breached and at-risk entities and
    counts live SLA records by derived status.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only.  Flagging breaches is the SLATracker sweep's job; a report
      that must be current sweeps first (BreachReportService).
    - ``hours_overdue`` and ``hours_remaining`` are rounded to one decimal.
    - Breached rows are ordered by ``breached_at`` descending; at-risk rows by
      ``deadline`` ascending.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func, select

from lifecycle_kernel.domain.sla import hours_between
from lifecycle_kernel.domain.states import Domain
from lifecycle_kernel.models.lifecycle_entity import LifecycleEntity
from lifecycle_kernel.models.sla_record import SLARecord
from lifecycle_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class BreachedItem:
    """One breached SLA record."""

    entity_id: UUID
    domain: Domain
    reference: str
    state: str
    state_display: str
    deadline: datetime
    breached_at: datetime | None
    hours_overdue: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": str(self.entity_id),
            "domain": self.domain.value,
            "reference": self.reference,
            "status": self.state,
            "status_display": self.state_display,
            "deadline": self.deadline.isoformat(),
            "breached_at": self.breached_at.isoformat() if self.breached_at else None,
            "hours_overdue": self.hours_overdue,
        }


@dataclass(frozen=True)
class AtRiskItem:
    """One SLA record approaching its deadline."""

    entity_id: UUID
    domain: Domain
    reference: str
    state: str
    state_display: str
    deadline: datetime
    hours_remaining: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": str(self.entity_id),
            "domain": self.domain.value,
            "reference": self.reference,
            "status": self.state,
            "status_display": self.state_display,
            "deadline": self.deadline.isoformat(),
            "hours_remaining": self.hours_remaining,
        }


@dataclass(frozen=True)
class SLAStats:
    """Counts of live SLA records by derived status."""

    breached: int
    at_risk: int
    on_track: int

    @property
    def total(self) -> int:
        return self.breached + self.at_risk + self.on_track

    def to_dict(self) -> dict[str, int]:
        return {
            "breached": self.breached,
            "at_risk": self.at_risk,
            "on_track": self.on_track,
            "total": self.total,
        }


class SLASelector(BaseSelector[SLARecord]):
    """
    Selector for breach reporting.

    Contract:
        ``list_breached``, ``list_at_risk`` and ``sla_stats`` each accept an
        optional domain filter.  ``now`` defaults to the injected clock.
    """

    def _base_query(self, domain: Domain | str | None):
        stmt = select(SLARecord, LifecycleEntity.reference).join(
            LifecycleEntity, LifecycleEntity.id == SLARecord.entity_id
        )
        if domain is not None:
            stmt = stmt.where(SLARecord.domain == Domain(domain).value)
        return stmt

    def _display(self, domain: str, state: str) -> str:
        return self._registry.display_name(domain, state)

    def list_breached(
        self,
        domain: Domain | str | None = None,
        now: datetime | None = None,
    ) -> list[BreachedItem]:
        """Records flagged by a sweep, most recently breached first."""
        now = now or self._clock.now()
        stmt = (
            self._base_query(domain)
            .where(SLARecord.is_breached == True)  # noqa: E712
            .order_by(SLARecord.breached_at.desc(), SLARecord.deadline)
            .execution_options(populate_existing=True)
        )
        return [
            BreachedItem(
                entity_id=record.entity_id,
                domain=Domain(record.domain),
                reference=reference,
                state=record.current_state,
                state_display=self._display(record.domain, record.current_state),
                deadline=record.deadline,
                breached_at=record.breached_at,
                hours_overdue=max(0.0, hours_between(record.deadline, now)),
            )
            for record, reference in self.session.execute(stmt)
        ]

    def list_at_risk(
        self,
        domain: Domain | str | None = None,
        now: datetime | None = None,
        window: timedelta | None = None,
    ) -> list[AtRiskItem]:
        """Unbreached records with ``now < deadline <= now + window``, soonest first."""
        now = now or self._clock.now()
        window = self._at_risk_window if window is None else window
        stmt = (
            self._base_query(domain)
            .where(
                SLARecord.is_breached == False,  # noqa: E712
                SLARecord.deadline > now,
                SLARecord.deadline <= now + window,
            )
            .order_by(SLARecord.deadline)
            .execution_options(populate_existing=True)
        )
        return [
            AtRiskItem(
                entity_id=record.entity_id,
                domain=Domain(record.domain),
                reference=reference,
                state=record.current_state,
                state_display=self._display(record.domain, record.current_state),
                deadline=record.deadline,
                hours_remaining=hours_between(now, record.deadline),
            )
            for record, reference in self.session.execute(stmt)
        ]

    def sla_stats(
        self,
        domain: Domain | str | None = None,
        now: datetime | None = None,
        window: timedelta | None = None,
    ) -> SLAStats:
        """
        Counts by derived status.

        Overdue records not yet flagged count as at-risk, matching
        ``domain.sla.derive_status``.
        """
        now = now or self._clock.now()
        window = self._at_risk_window if window is None else window

        def count(*criteria) -> int:
            stmt = select(func.count(SLARecord.id)).where(*criteria)
            if domain is not None:
                stmt = stmt.where(SLARecord.domain == Domain(domain).value)
            return self.session.execute(stmt).scalar_one()

        return SLAStats(
            breached=count(SLARecord.is_breached == True),  # noqa: E712
            at_risk=count(
                SLARecord.is_breached == False,  # noqa: E712
                SLARecord.deadline <= now + window,
            ),
            on_track=count(
                SLARecord.is_breached == False,  # noqa: E712
                SLARecord.deadline > now + window,
            ),
        )
