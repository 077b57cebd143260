"""
Data Transfer Objects crossing the kernel boundary.

All DTOs are frozen dataclasses.  Services and selectors return these, never
ORM instances, so callers cannot mutate persisted rows behind the engine's
back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from lifecycle_kernel.domain.sla import SLASnapshot
from lifecycle_kernel.domain.state_machine import TransitionOption
from lifecycle_kernel.domain.states import ActorType, Domain, EventType


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation."""

    actor_type: ActorType
    actor_id: str | None = None
    actor_name: str | None = None

    @classmethod
    def system(cls, name: str = "system") -> Actor:
        return cls(actor_type=ActorType.SYSTEM, actor_id=None, actor_name=name)

    @classmethod
    def admin(cls, actor_id: str, name: str | None = None) -> Actor:
        return cls(actor_type=ActorType.ADMIN, actor_id=str(actor_id), actor_name=name)

    @classmethod
    def user(cls, actor_id: str, name: str | None = None) -> Actor:
        return cls(actor_type=ActorType.USER, actor_id=str(actor_id), actor_name=name)


@dataclass(frozen=True)
class EventRecord:
    """Immutable view of one lifecycle event."""

    event_id: UUID
    entity_id: UUID
    domain: Domain
    entity_sequence: int
    event_type: EventType
    previous_state: str | None
    new_state: str | None
    actor_type: ActorType
    actor_id: str | None
    actor_name: str | None
    notes: str | None
    metadata: dict[str, Any]
    created_at: datetime
    idempotency_key: str | None = None


@dataclass(frozen=True)
class TimelineEntry:
    """Event enriched with resolved display labels."""

    event: EventRecord
    previous_state_display: str | None
    new_state_display: str | None

    def to_dict(self) -> dict[str, Any]:
        e = self.event
        return {
            "id": str(e.event_id),
            "sequence": e.entity_sequence,
            "event_type": e.event_type.value,
            "previous_status": e.previous_state,
            "new_status": e.new_state,
            "previous_status_display": self.previous_state_display,
            "new_status_display": self.new_state_display,
            "actor_type": e.actor_type.value,
            "actor_id": e.actor_id,
            "actor_name": e.actor_name,
            "notes": e.notes,
            "metadata": e.metadata or None,
            "created_at": e.created_at.isoformat(),
        }


@dataclass(frozen=True)
class EntitySnapshot:
    """Persisted state of a lifecycle entity at read time."""

    entity_id: UUID
    domain: Domain
    reference: str
    current_state: str
    version: int
    parent_id: UUID | None
    owner_id: str | None
    attributes: dict[str, Any]
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class EntityView:
    """Entity read model: snapshot plus computed lifecycle information."""

    entity: EntitySnapshot
    state_display: str
    available_transitions: tuple[TransitionOption, ...]
    sla: SLASnapshot
    flags: dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        e = self.entity
        return {
            "id": str(e.entity_id),
            "domain": e.domain.value,
            "reference": e.reference,
            "status": e.current_state,
            "status_display": self.state_display,
            "version": e.version,
            "parent_id": str(e.parent_id) if e.parent_id else None,
            "owner_id": e.owner_id,
            "attributes": dict(e.attributes),
            "created_at": e.created_at.isoformat(),
            "updated_at": e.updated_at.isoformat(),
            "available_transitions": [o.to_dict() for o in self.available_transitions],
            "sla": self.sla.to_dict(),
            **self.flags,
        }
