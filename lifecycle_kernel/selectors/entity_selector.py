"""
Module: lifecycle_kernel.selectors.entity_selector
Responsibility: Read access to lifecycle entities and their event history,
    assembled into EntityView and TimelineEntry DTOs with display labels.
    Filtered, paginated listings and per-state / per-attribute counts back
    the admin and customer list screens.
Architecture position: Kernel > Selectors.

Failure modes:
    - Returns None or an empty list when nothing matches; never raises on
      absence of data.
    - WorkflowValidationError for an unknown sort key, SLA status or an
      out-of-range page size.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import Select, func, or_, select

from lifecycle_kernel.domain.dtos import EntitySnapshot, EntityView, TimelineEntry
from lifecycle_kernel.domain.sla import SLAStatus, build_snapshot
from lifecycle_kernel.domain.states import Domain, EventType
from lifecycle_kernel.exceptions import WorkflowValidationError
from lifecycle_kernel.models.lifecycle_entity import LifecycleEntity
from lifecycle_kernel.models.lifecycle_event import LifecycleEvent
from lifecycle_kernel.models.sla_record import SLARecord
from lifecycle_kernel.selectors.base import BaseSelector
from lifecycle_kernel.services.event_store import to_event_record
from lifecycle_kernel.services.transition_engine import to_entity_snapshot

MAX_PAGE_SIZE = 200

_SORT_COLUMNS = {
    "created_at": LifecycleEntity.created_at,
    "updated_at": LifecycleEntity.updated_at,
    "reference": LifecycleEntity.reference,
    "state": LifecycleEntity.current_state,
}


@dataclass(frozen=True)
class EntityPage:
    """One page of a filtered listing plus the unpaged total."""

    items: tuple[EntitySnapshot, ...]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
            "has_more": self.has_more,
            "items": [
                {
                    "id": str(item.entity_id),
                    "reference": item.reference,
                    "state": item.current_state,
                    "owner_id": item.owner_id,
                    "parent_id": str(item.parent_id) if item.parent_id else None,
                    "created_at": item.created_at.isoformat(),
                    "updated_at": item.updated_at.isoformat(),
                }
                for item in self.items
            ],
        }


class EntitySelector(BaseSelector[LifecycleEntity]):
    """
    Selector for entity views and timelines.

    Contract:
        ``get_view`` returns the entity with display name, the ordered
        options from its current state and its derived SLA snapshot.
        ``timeline`` returns history oldest first.  ``list_entities`` filters
        one domain and pages it; ``state_counts`` covers every state of the
        domain, zeros included.

    Non-goals:
        - Derived workflow flags (can_cancel and friends) are attached by the
          domain coordinators.
    """

    def get_snapshot(
        self, entity_id: UUID, domain: Domain | str | None = None
    ) -> EntitySnapshot | None:
        entity = self._one(select(LifecycleEntity).where(LifecycleEntity.id == entity_id))
        if entity is None:
            return None
        if domain is not None and entity.domain != Domain(domain).value:
            return None
        return to_entity_snapshot(entity)

    def find_by_reference(
        self, domain: Domain | str, reference: str
    ) -> EntitySnapshot | None:
        entity = self._one(
            select(LifecycleEntity).where(
                LifecycleEntity.domain == Domain(domain).value,
                LifecycleEntity.reference == reference,
            )
        )
        return to_entity_snapshot(entity) if entity is not None else None

    def list_children(
        self, parent_id: UUID, domain: Domain | str | None = None
    ) -> list[EntitySnapshot]:
        """Entities whose parent is ``parent_id`` (returns and shipments of an order)."""
        stmt = select(LifecycleEntity).where(LifecycleEntity.parent_id == parent_id)
        if domain is not None:
            stmt = stmt.where(LifecycleEntity.domain == Domain(domain).value)
        rows = self._all(stmt.order_by(LifecycleEntity.created_at))
        return [to_entity_snapshot(row) for row in rows]

    def get_view(
        self,
        entity_id: UUID,
        domain: Domain | str,
        now: datetime | None = None,
    ) -> EntityView | None:
        snapshot = self.get_snapshot(entity_id, domain)
        if snapshot is None:
            return None
        now = now or self._clock.now()
        definition = self._registry.for_domain(snapshot.domain)

        record = self._one(select(SLARecord).where(SLARecord.entity_id == entity_id))
        if record is None:
            sla = build_snapshot(None, None, False, None, now, self._at_risk_window)
        else:
            sla = build_snapshot(
                state=record.current_state,
                deadline=record.deadline,
                is_breached=record.is_breached,
                breached_at=record.breached_at,
                now=now,
                window=self._at_risk_window,
            )

        return EntityView(
            entity=snapshot,
            state_display=definition.display_name(snapshot.current_state),
            available_transitions=tuple(
                definition.transition_options(snapshot.current_state)
            ),
            sla=sla,
        )

    def timeline(
        self,
        entity_id: UUID,
        event_types: tuple[EventType, ...] | None = None,
    ) -> list[TimelineEntry]:
        """History oldest first, optionally restricted to ``event_types``."""
        stmt = select(LifecycleEvent).where(LifecycleEvent.entity_id == entity_id)
        if event_types:
            stmt = stmt.where(
                LifecycleEvent.event_type.in_([t.value for t in event_types])
            )
        rows = self.session.execute(
            stmt.order_by(LifecycleEvent.entity_sequence)
        ).scalars()

        entries = []
        for row in rows:
            record = to_event_record(row)
            definition = self._registry.for_domain(record.domain)
            entries.append(
                TimelineEntry(
                    event=record,
                    previous_state_display=definition.display_name(record.previous_state),
                    new_state_display=definition.display_name(record.new_state),
                )
            )
        return entries

    def list_entities(
        self,
        domain: Domain | str,
        *,
        state: str | None = None,
        sla_status: SLAStatus | str | None = None,
        owner_id: str | None = None,
        parent_id: UUID | None = None,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
        order_by: str = "-created_at",
        now: datetime | None = None,
        window: timedelta | None = None,
    ) -> EntityPage:
        """
        Filtered page of one domain's entities.

        Args:
            state: Exact current state.
            sla_status: Derived SLA status, classified as in
                ``domain.sla.derive_status`` (``completed`` = no live record).
            owner_id: Owning customer ("my orders", "my returns").
            created_from / created_to: Inclusive / exclusive creation bounds.
            search: Case-insensitive substring of the reference or owner.
            order_by: Sort key, ``-`` prefix for descending.  Ties break on
                reference.
        """
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise WorkflowValidationError("limit", f"Must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise WorkflowValidationError("offset", "Must not be negative")
        descending = order_by.startswith("-")
        column = _SORT_COLUMNS.get(order_by.lstrip("-"))
        if column is None:
            raise WorkflowValidationError("order_by", f"Unknown sort key {order_by!r}")

        stmt = select(LifecycleEntity).where(LifecycleEntity.domain == Domain(domain).value)
        if state is not None:
            stmt = stmt.where(LifecycleEntity.current_state == state)
        if owner_id is not None:
            stmt = stmt.where(LifecycleEntity.owner_id == owner_id)
        if parent_id is not None:
            stmt = stmt.where(LifecycleEntity.parent_id == parent_id)
        if created_from is not None:
            stmt = stmt.where(LifecycleEntity.created_at >= created_from)
        if created_to is not None:
            stmt = stmt.where(LifecycleEntity.created_at < created_to)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    LifecycleEntity.reference.ilike(pattern),
                    LifecycleEntity.owner_id.ilike(pattern),
                )
            )
        if sla_status is not None:
            stmt = self._filter_sla(stmt, sla_status, now, window)

        total = self.session.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()
        ordered = stmt.order_by(
            column.desc() if descending else column.asc(),
            LifecycleEntity.reference,
        )
        rows = self._all(ordered.limit(limit).offset(offset))
        return EntityPage(
            items=tuple(to_entity_snapshot(row) for row in rows),
            total=total,
            limit=limit,
            offset=offset,
        )

    def state_counts(
        self, domain: Domain | str, owner_id: str | None = None
    ) -> dict[str, int]:
        """Entity count per state in declaration order, zeros included."""
        domain = Domain(domain)
        stmt = (
            select(LifecycleEntity.current_state, func.count(LifecycleEntity.id))
            .where(LifecycleEntity.domain == domain.value)
            .group_by(LifecycleEntity.current_state)
        )
        if owner_id is not None:
            stmt = stmt.where(LifecycleEntity.owner_id == owner_id)
        found = dict(self.session.execute(stmt).all())
        counts = {
            option["value"]: found.pop(option["value"], 0)
            for option in self._registry.for_domain(domain).status_options()
        }
        # Rows in states no longer declared still count.
        counts.update(found)
        return counts

    def attribute_counts(
        self, domain: Domain | str, key: str, owner_id: str | None = None
    ) -> dict[str, int]:
        """Entity count per value of ``attributes[key]``, most common first."""
        value = LifecycleEntity.attributes[key].as_string()
        stmt = (
            select(value, func.count(LifecycleEntity.id))
            .where(LifecycleEntity.domain == Domain(domain).value)
            .group_by(value)
        )
        if owner_id is not None:
            stmt = stmt.where(LifecycleEntity.owner_id == owner_id)
        rows = self.session.execute(stmt).all()
        return dict(
            sorted(
                ((found if found is not None else "unknown", count) for found, count in rows),
                key=lambda item: (-item[1], item[0]),
            )
        )

    def _filter_sla(
        self,
        stmt: Select,
        sla_status: SLAStatus | str,
        now: datetime | None,
        window: timedelta | None,
    ) -> Select:
        try:
            status = SLAStatus(sla_status)
        except ValueError:
            raise WorkflowValidationError("sla_status", f"Unknown SLA status {sla_status!r}") from None
        now = now or self._clock.now()
        horizon = now + (self._at_risk_window if window is None else window)

        stmt = stmt.outerjoin(SLARecord, SLARecord.entity_id == LifecycleEntity.id)
        if status is SLAStatus.COMPLETED:
            return stmt.where(SLARecord.id.is_(None))
        if status is SLAStatus.BREACHED:
            return stmt.where(SLARecord.is_breached == True)  # noqa: E712
        if status is SLAStatus.AT_RISK:
            return stmt.where(
                SLARecord.is_breached == False,  # noqa: E712
                SLARecord.deadline <= horizon,
            )
        return stmt.where(
            SLARecord.is_breached == False,  # noqa: E712
            SLARecord.deadline > horizon,
        )
