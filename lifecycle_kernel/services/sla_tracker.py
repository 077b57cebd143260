"""
SLATracker -- service-level deadline maintenance and breach sweeps.

Responsibility:
    Keeps at most one live SLA record per entity in step with the entity's
    state, flags overdue records, and derives the read-side SLA status.

Architecture position:
    Kernel > Services -- imperative shell.  ``on_transition`` runs inside the
    TransitionEngine's unit of work; ``sweep_breaches`` runs from the
    SweepScheduler tick (or on demand from the breach report).

Invariants enforced:
    - Zero-SLA states have no record: ``on_transition`` deletes it.
    - Replace, never historize: an existing record is updated in place with
      a fresh deadline and cleared breach flags.
    - Breach monotonicity: the sweep only moves ``is_breached`` False -> True
      for rows whose deadline has passed; nothing else resets it.

Failure modes:
    - SQLAlchemyError propagates to the caller (the engine converts it into
      PersistenceFailureError and rolls back the whole unit).

Concurrency:
    ``sweep_breaches`` is a single conditional UPDATE
    (``is_breached = false AND deadline < now``).  It never touches
    ``current_state`` and only advances already-overdue rows, so it may run
    concurrently with transitions.  Running it twice is a no-op.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from lifecycle_kernel.domain.clock import Clock
from lifecycle_kernel.domain.definitions import DEFAULT_REGISTRY
from lifecycle_kernel.domain.sla import (
    DEFAULT_AT_RISK_WINDOW,
    SLASnapshot,
    build_snapshot,
    compute_deadline,
)
from lifecycle_kernel.domain.state_machine import StateMachineRegistry
from lifecycle_kernel.domain.states import Domain
from lifecycle_kernel.logging_config import get_logger
from lifecycle_kernel.models.sla_record import SLARecord
from lifecycle_kernel.services.base import BaseService

logger = get_logger("services.sla_tracker")


class SLATracker(BaseService):
    """
    Maintains SLA records and sweeps breaches.

    Contract:
        - ``on_transition(entity_id, domain, new_state, now)``
        - ``sweep_breaches(now) -> count``
        - ``status_for(entity_id, now) -> SLASnapshot``

    Guarantees:
        - Flush-only; the caller owns the transaction.

    Non-goals:
        - Does NOT notify anyone about breaches; reporting is a read concern
          served by ``selectors.sla_selector``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        registry: StateMachineRegistry | None = None,
        at_risk_window: timedelta = DEFAULT_AT_RISK_WINDOW,
    ):
        super().__init__(session, clock)
        self._registry = registry or DEFAULT_REGISTRY
        self._at_risk_window = at_risk_window

    def on_transition(
        self,
        entity_id: UUID,
        domain: Domain | str,
        new_state: str,
        now: datetime | None = None,
    ) -> SLARecord | None:
        """
        Bring the entity's SLA record in line with ``new_state``.

        Returns:
            The live record, or None when the state owes no deadline.
        """
        now = now or self._clock.now()
        domain = Domain(domain)
        sla_hours = self._registry.sla_hours(domain, new_state)

        record = self.get_record(entity_id)

        deadline = compute_deadline(now, sla_hours)
        if deadline is None:
            if record is not None:
                self.session.delete(record)
                self.session.flush()
                logger.info(
                    "sla_cleared",
                    extra={
                        "entity_id": str(entity_id),
                        "domain": domain.value,
                        "state": new_state,
                    },
                )
            return None

        if record is None:
            record = SLARecord(
                entity_id=entity_id,
                domain=domain.value,
                current_state=new_state,
                deadline=deadline,
                is_breached=False,
                breached_at=None,
                updated_at=now,
            )
            self.session.add(record)
        else:
            record.current_state = new_state
            record.deadline = deadline
            record.is_breached = False
            record.breached_at = None
            record.updated_at = now
        self.session.flush()

        logger.info(
            "sla_upserted",
            extra={
                "entity_id": str(entity_id),
                "domain": domain.value,
                "state": new_state,
                "sla_hours": sla_hours,
                "deadline": deadline.isoformat(),
            },
        )
        return record

    def sweep_breaches(self, now: datetime | None = None) -> int:
        """
        Flag every overdue, not-yet-flagged record as breached.

        Postconditions:
            - Every record with ``deadline < now`` has ``is_breached`` True.
            - Records flagged by an earlier sweep keep their ``breached_at``.

        Returns:
            Number of records newly flagged.
        """
        now = now or self._clock.now()
        result = self.session.execute(
            update(SLARecord)
            .where(
                SLARecord.is_breached == False,  # noqa: E712
                SLARecord.deadline < now,
            )
            .values(is_breached=True, breached_at=now, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        count = result.rowcount or 0
        self.session.flush()

        logger.info(
            "sla_sweep_completed",
            extra={"breached_count": count, "swept_at": now.isoformat()},
        )
        return count

    def get_record(self, entity_id: UUID) -> SLARecord | None:
        return self._scalar_fresh(select(SLARecord).where(SLARecord.entity_id == entity_id))

    def status_for(self, entity_id: UUID, now: datetime | None = None) -> SLASnapshot:
        """Derived SLA status for one entity (``completed`` when no record)."""
        now = now or self._clock.now()
        record = self.get_record(entity_id)
        if record is None:
            return build_snapshot(None, None, False, None, now, self._at_risk_window)
        return build_snapshot(
            state=record.current_state,
            deadline=record.deadline,
            is_breached=record.is_breached,
            breached_at=record.breached_at,
            now=now,
            window=self._at_risk_window,
        )
