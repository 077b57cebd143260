"""
Module: lifecycle_kernel.models.outbound_event
Responsibility: Durable record that a creation or transition was committed
    and still has post-commit handlers to run.
Architecture position: Kernel > Models.  May import from db/base.py and exceptions.py.

Invariants enforced:
    - Exactly one outbound row per committed lifecycle event
      (UNIQUE source_event_id), written in the same unit of work.
    - Delivery status follows VALID_TRANSITIONS.

Failure modes:
    - OutboundTransitionError on an illegal status change.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from lifecycle_kernel.db.base import Base
from lifecycle_kernel.db.types import UUIDString
from lifecycle_kernel.exceptions import OutboundTransitionError


class OutboundStatus(str, Enum):
    """
    Delivery status of an outbound event.

    State machine:
        PENDING -> DISPATCHED | FAILED | DEAD
        FAILED -> DISPATCHED | FAILED | DEAD
        DISPATCHED: terminal
        DEAD: terminal
    """

    PENDING = "pending"
    DISPATCHED = "dispatched"
    FAILED = "failed"
    DEAD = "dead"


VALID_TRANSITIONS: dict[OutboundStatus, frozenset[OutboundStatus]] = {
    OutboundStatus.PENDING: frozenset({
        OutboundStatus.DISPATCHED, OutboundStatus.FAILED, OutboundStatus.DEAD,
    }),
    OutboundStatus.FAILED: frozenset({
        OutboundStatus.DISPATCHED, OutboundStatus.FAILED, OutboundStatus.DEAD,
    }),
    # Terminal states
    OutboundStatus.DISPATCHED: frozenset(),
    OutboundStatus.DEAD: frozenset(),
}


class OutboundEvent(Base):
    """One committed lifecycle event awaiting (or past) post-commit delivery."""

    __tablename__ = "lifecycle_outbound_events"

    __table_args__ = (
        Index("idx_outbound_status", "status"),
        Index("idx_outbound_entity", "entity_id"),
    )

    source_event_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
        unique=True,
    )

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    domain: Mapped[str] = mapped_column(String(30), nullable=False)
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)
    previous_state: Mapped[str | None] = mapped_column(String(40), nullable=True)
    new_state: Mapped[str | None] = mapped_column(String(40), nullable=True)

    payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=OutboundStatus.PENDING.value,
    )

    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )

    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)
    last_attempt_at: Mapped[datetime | None] = mapped_column(nullable=True)
    dispatched_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def status_enum(self) -> OutboundStatus:
        return OutboundStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self.status_enum]

    def validate_transition(self, target: OutboundStatus) -> None:
        """Raise OutboundTransitionError unless ``target`` is reachable."""
        if target not in VALID_TRANSITIONS[self.status_enum]:
            raise OutboundTransitionError(
                outbound_id=str(self.id),
                from_status=self.status,
                to_status=target.value,
            )

    def __repr__(self) -> str:
        return f"<OutboundEvent {self.domain}:{self.new_state} {self.status} x{self.attempts}>"
