"""
EventStore -- append-only ledger of lifecycle events.

Responsibility:
    Appends creation, status-change and note events for an entity and reads
    an entity's history back in order.  No update or delete exists in the
    public contract; corrections are compensating appends.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the TransitionEngine
    inside its unit of work; read by selectors and the outbound handlers.

Invariants enforced:
    - ``entity_sequence`` is allocated from the entity's own counter
      (``LifecycleEntity.event_count``), which is read under the entity row
      lock, so an entity's history is a gap-free 1..n sequence.  The
      aggregate-max-plus-one pattern is never used.
    - Appends trust the caller: legality was decided by the TransitionEngine.

Failure modes:
    - IntegrityError on (entity_id, entity_sequence) or
      (entity_id, idempotency_key) collision, surfaced by the engine as a
      retryable PersistenceFailureError.

Audit relevance:
    ``list_by_entity`` is the canonical history read; ``replay_states``
    reconstructs the sequence of states an entity has held.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select

from lifecycle_kernel.domain.dtos import Actor, EventRecord
from lifecycle_kernel.domain.states import ActorType, Domain, EventType
from lifecycle_kernel.logging_config import get_logger
from lifecycle_kernel.models.lifecycle_entity import LifecycleEntity
from lifecycle_kernel.models.lifecycle_event import LifecycleEvent
from lifecycle_kernel.services.base import BaseService

logger = get_logger("services.event_store")


@dataclass(frozen=True)
class NewEvent:
    """An event about to be appended."""

    event_type: EventType
    actor: Actor
    previous_state: str | None = None
    new_state: str | None = None
    notes: str | None = None
    metadata: dict[str, Any] | None = None
    idempotency_key: str | None = None


def to_event_record(row: LifecycleEvent) -> EventRecord:
    return EventRecord(
        event_id=row.id,
        entity_id=row.entity_id,
        domain=Domain(row.domain),
        entity_sequence=row.entity_sequence,
        event_type=EventType(row.event_type),
        previous_state=row.previous_state,
        new_state=row.new_state,
        actor_type=ActorType(row.actor_type),
        actor_id=row.actor_id,
        actor_name=row.actor_name,
        notes=row.notes,
        metadata=dict(row.payload or {}),
        created_at=row.created_at,
        idempotency_key=row.idempotency_key,
    )


class EventStore(BaseService):
    """
    Append-only event ledger.

    Contract:
        ``append(entity, event) -> event_id`` adds one row and advances the
        entity's event counter.  ``list_by_entity(entity_id)`` returns the
        history oldest first.

    Guarantees:
        - Flush-only: the caller's transaction decides whether the event
          becomes visible.
        - ``append`` issues no query before adding the row, so no autoflush
          can separate a state change from the event that records it.

    Non-goals:
        - Does NOT validate transitions.
    """

    def append(
        self,
        entity: LifecycleEntity,
        event: NewEvent,
        occurred_at: datetime | None = None,
    ) -> UUID:
        """
        Append ``event`` to ``entity``'s history.

        Preconditions:
            - ``entity`` is persistent or pending in this session and, for
              existing entities, was loaded under the row lock.
        Postconditions:
            - ``entity.event_count`` is incremented and equals the new row's
              ``entity_sequence``.

        Returns:
            The new event's id.
        """
        event_id = uuid4()
        entity.event_count = (entity.event_count or 0) + 1

        row = LifecycleEvent(
            id=event_id,
            entity_id=entity.id,
            domain=entity.domain,
            entity_sequence=entity.event_count,
            event_type=event.event_type.value,
            previous_state=event.previous_state,
            new_state=event.new_state,
            actor_type=event.actor.actor_type.value,
            actor_id=event.actor.actor_id,
            actor_name=event.actor.actor_name,
            notes=event.notes,
            payload=dict(event.metadata) if event.metadata else None,
            idempotency_key=event.idempotency_key,
            created_at=occurred_at or self._clock.now(),
        )
        self.session.add(row)

        logger.debug(
            "event_appended",
            extra={
                "event_id": str(event_id),
                "entity_id": str(entity.id),
                "event_type": event.event_type.value,
                "entity_sequence": row.entity_sequence,
                "previous_state": event.previous_state,
                "new_state": event.new_state,
            },
        )
        return event_id

    def list_by_entity(self, entity_id: UUID) -> list[EventRecord]:
        """All events for an entity, oldest first."""
        rows = self.session.execute(
            select(LifecycleEvent)
            .where(LifecycleEvent.entity_id == entity_id)
            .order_by(LifecycleEvent.entity_sequence)
        ).scalars().all()
        return [to_event_record(row) for row in rows]

    def find_by_idempotency_key(
        self, entity_id: UUID, idempotency_key: str
    ) -> EventRecord | None:
        row = self.session.execute(
            select(LifecycleEvent).where(
                LifecycleEvent.entity_id == entity_id,
                LifecycleEvent.idempotency_key == idempotency_key,
            )
        ).scalar_one_or_none()
        return to_event_record(row) if row is not None else None

    def replay_states(self, entity_id: UUID) -> list[str]:
        """
        Reconstruct every state the entity has held from its history.

        Raises:
            ValueError: if a status_change does not continue from the state
                reached so far (a gap or a tampered row).
        """
        states: list[str] = []
        for record in self.list_by_entity(entity_id):
            if record.event_type is EventType.CREATED:
                states = [record.new_state]
            elif record.event_type is EventType.STATUS_CHANGE:
                current = states[-1] if states else None
                if record.previous_state != current:
                    raise ValueError(
                        f"History gap at sequence {record.entity_sequence}: "
                        f"expected previous state {current!r}, "
                        f"found {record.previous_state!r}"
                    )
                states.append(record.new_state)
        return states
