"""
Module: lifecycle_kernel.models.sla_record
Responsibility: The single live service-level deadline owed by an entity in
    its current state.
Architecture position: Kernel > Models.  May import from db/base.py and sibling models.

Invariants enforced:
    - At most one row per entity (UNIQUE entity_id).  Replaced on each
      transition, never historized; deleted on entering a zero-SLA state.
    - ``current_state`` always equals the entity's live state (maintained by
      SLATracker inside the TransitionEngine's unit of work).
    - ``is_breached`` only goes False -> True via the sweep; it returns to
      False only when a subsequent transition replaces the record.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifecycle_kernel.db.base import Base
from lifecycle_kernel.db.types import UUIDString
from lifecycle_kernel.models.lifecycle_entity import LifecycleEntity


class SLARecord(Base):
    """Live deadline for one entity."""

    __tablename__ = "lifecycle_sla"

    __table_args__ = (
        Index("idx_sla_open_deadline", "is_breached", "deadline"),
        Index("idx_sla_domain", "domain"),
    )

    entity_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("lifecycle_entities.id"),
        nullable=False,
        unique=True,
    )

    domain: Mapped[str] = mapped_column(String(30), nullable=False)
    current_state: Mapped[str] = mapped_column(String(40), nullable=False)

    deadline: Mapped[datetime] = mapped_column(nullable=False)

    is_breached: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    breached_at: Mapped[datetime | None] = mapped_column(nullable=True)

    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    entity: Mapped[LifecycleEntity] = relationship()

    def __repr__(self) -> str:
        flag = " BREACHED" if self.is_breached else ""
        return f"<SLARecord {self.entity_id} {self.current_state} due {self.deadline}{flag}>"
