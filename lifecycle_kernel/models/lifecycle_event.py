"""
Module: lifecycle_kernel.models.lifecycle_event
Responsibility: Append-only log of every creation, status change and note on
    a lifecycle entity.
Architecture position: Kernel > Models.  May import from db/base.py and sibling models.

Invariants enforced:
    - Events are immutable once written (UPDATE/DELETE blocked by the ORM
      listeners in db/immutability.py).
    - (entity_id, entity_sequence) is unique: each entity's history is a
      gap-free 1..n sequence and two racing appends cannot both land.
    - (entity_id, idempotency_key) is unique when a key is supplied.

Audit relevance:
    Replaying an entity's status_change events in sequence order reproduces
    every state the entity has held, with actor and timestamp for each hop.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifecycle_kernel.db.base import Base
from lifecycle_kernel.db.types import UUIDString
from lifecycle_kernel.models.lifecycle_entity import LifecycleEntity


class LifecycleEvent(Base):
    """One row in an entity's lifecycle history."""

    __tablename__ = "lifecycle_events"

    __table_args__ = (
        UniqueConstraint("entity_id", "entity_sequence", name="uq_event_entity_sequence"),
        UniqueConstraint("entity_id", "idempotency_key", name="uq_event_idempotency_key"),
        Index("idx_event_created", "created_at"),
        Index("idx_event_domain_type", "domain", "event_type"),
    )

    entity_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lifecycle_entities.id"),
        nullable=False,
    )

    domain: Mapped[str] = mapped_column(String(30), nullable=False)

    # 1-based position in the entity's history
    entity_sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    event_type: Mapped[str] = mapped_column(String(20), nullable=False)

    previous_state: Mapped[str | None] = mapped_column(String(40), nullable=True)
    new_state: Mapped[str | None] = mapped_column(String(40), nullable=True)

    actor_type: Mapped[str] = mapped_column(String(10), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    actor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Opaque caller metadata (notify flag, location, refund reason, ...).
    # The attribute name avoids DeclarativeBase.metadata.
    payload: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )

    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    # Orders INSERTs after the parent entity within a flush
    entity: Mapped[LifecycleEntity] = relationship()

    def __repr__(self) -> str:
        return (
            f"<LifecycleEvent #{self.entity_sequence} {self.event_type} "
            f"{self.previous_state}->{self.new_state}>"
        )
