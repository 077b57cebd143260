"""
OutboundService -- persistence side of post-commit delivery.

Responsibility:
    Writes the single OutboundEvent row that accompanies every committed
    creation or transition, and records delivery outcomes (dispatched,
    failed, dead) for the dispatcher.

Architecture position:
    Kernel > Services -- imperative shell.  ``record`` runs inside the
    TransitionEngine's unit of work.  The ``mark_*`` methods run in the
    dispatcher's own short transactions, never in the transition's.

Invariants enforced:
    - One outbound row per committed lifecycle event (UNIQUE source_event_id).
    - Delivery status changes follow ``VALID_TRANSITIONS``.
    - A row that has failed ``max_attempts`` times becomes DEAD and is no
      longer retried.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import and_, or_, select

from lifecycle_kernel.logging_config import get_logger
from lifecycle_kernel.models.lifecycle_entity import LifecycleEntity
from lifecycle_kernel.models.outbound_event import OutboundEvent, OutboundStatus
from lifecycle_kernel.services.base import BaseService

logger = get_logger("services.outbound")


class OutboundService(BaseService):
    """
    Outbound row bookkeeping.

    Guarantees:
        - Flush-only; the caller owns the transaction.
    """

    def record(
        self,
        entity: LifecycleEntity,
        source_event_id: UUID,
        event_type: str,
        previous_state: str | None,
        new_state: str | None,
        payload: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> UUID:
        """Add the outbound row for a just-appended event. Returns its id."""
        outbound_id = uuid4()
        self.session.add(
            OutboundEvent(
                id=outbound_id,
                source_event_id=source_event_id,
                entity_id=entity.id,
                domain=entity.domain,
                event_type=event_type,
                previous_state=previous_state,
                new_state=new_state,
                payload=payload or {},
                status=OutboundStatus.PENDING.value,
                attempts=0,
                created_at=now or self._clock.now(),
            )
        )
        return outbound_id

    def get(self, outbound_id: UUID) -> OutboundEvent | None:
        return self.session.get(OutboundEvent, outbound_id)

    def mark_dispatched(self, outbound: OutboundEvent) -> None:
        outbound.validate_transition(OutboundStatus.DISPATCHED)
        now = self._clock.now()
        outbound.status = OutboundStatus.DISPATCHED.value
        outbound.attempts = (outbound.attempts or 0) + 1
        outbound.last_attempt_at = now
        outbound.dispatched_at = now
        outbound.last_error = None
        self.session.flush()

    def mark_failed(self, outbound: OutboundEvent, error: str, max_attempts: int) -> OutboundStatus:
        """
        Record a failed delivery attempt.

        Returns:
            FAILED while retries remain, DEAD once ``max_attempts`` is reached.
        """
        attempts = (outbound.attempts or 0) + 1
        target = OutboundStatus.DEAD if attempts >= max_attempts else OutboundStatus.FAILED
        outbound.validate_transition(target)
        outbound.status = target.value
        outbound.attempts = attempts
        outbound.last_attempt_at = self._clock.now()
        outbound.last_error = error[:2000]
        self.session.flush()

        log = logger.error if target is OutboundStatus.DEAD else logger.warning
        log(
            "outbound_marked_" + target.value,
            extra={
                "outbound_id": str(outbound.id),
                "attempts": attempts,
                "max_attempts": max_attempts,
            },
        )
        return target

    def list_retryable(
        self, limit: int = 100, pending_before: datetime | None = None
    ) -> list[UUID]:
        """
        Ids of FAILED rows, oldest first.

        With ``pending_before``, PENDING rows created before that instant are
        included too; their publish was lost (process exit, executor shut down).
        """
        criteria = OutboundEvent.status == OutboundStatus.FAILED.value
        if pending_before is not None:
            criteria = or_(
                criteria,
                and_(
                    OutboundEvent.status == OutboundStatus.PENDING.value,
                    OutboundEvent.created_at < pending_before,
                ),
            )
        return list(
            self.session.execute(
                select(OutboundEvent.id)
                .where(criteria)
                .order_by(OutboundEvent.created_at)
                .limit(limit)
            ).scalars()
        )
