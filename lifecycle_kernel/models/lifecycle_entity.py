"""
Module: lifecycle_kernel.models.lifecycle_entity
Responsibility: ORM persistence for Orders, ReturnRequests and Shipments as
    one keyed relation.  Domain-specific business fields live in the JSON
    ``attributes`` column; lifecycle bookkeeping lives in typed columns.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - ``version`` is SQLAlchemy's version_id_col: every UPDATE is issued as
      ``WHERE id = :id AND version = :expected`` and fails with StaleDataError
      when another transaction got there first (per-entity compare-and-swap).
    - (domain, reference) is unique.
    - An order has at most one shipment (partial unique index on parent_id).
    - ``current_state`` changes only together with a status_change event in
      the same flush (enforced by db/immutability.py).

Failure modes:
    - StaleDataError on a lost version race.
    - IntegrityError on a duplicate (domain, reference) or a second shipment
      for one order.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from lifecycle_kernel.db.base import Base
from lifecycle_kernel.db.types import UUIDString


class LifecycleEntity(Base):
    """
    A business entity whose state is governed by a lifecycle table.

    Contract:
        Created and mutated only through the TransitionEngine.  Mutable
        business fields may be merged into ``attributes`` in the same unit
        of work as a transition or note.
    """

    __tablename__ = "lifecycle_entities"

    __table_args__ = (
        UniqueConstraint("domain", "reference", name="uq_entity_domain_reference"),
        Index("idx_entity_domain_state", "domain", "current_state"),
        Index("idx_entity_parent", "parent_id"),
        Index("idx_entity_owner", "owner_id"),
        # At most one shipment per order
        Index(
            "uq_entity_one_shipment_per_order",
            "parent_id",
            unique=True,
            sqlite_where=text("domain = 'shipment'"),
            postgresql_where=text("domain = 'shipment'"),
        ),
    )

    domain: Mapped[str] = mapped_column(String(30), nullable=False)

    # Human-facing number (ORD-..., RET-..., SHP-...)
    reference: Mapped[str] = mapped_column(String(64), nullable=False)

    current_state: Mapped[str] = mapped_column(String(40), nullable=False)

    # Return/shipment -> order
    parent_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Customer who owns the entity
    owner_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    attributes: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Locked per-entity counter backing LifecycleEvent.entity_sequence
    event_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    created_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<LifecycleEntity {self.domain}:{self.reference} [{self.current_state}] v{self.version}>"
