"""
TransitionEngine -- the only write path to an entity's lifecycle state.

Responsibility:
    Validates a requested state change against the domain's
    StateMachineDefinition and, when legal, commits the new entity state,
    its event, its SLA record and its outbound row as one unit of work.
    Also creates entities (initial state + ``created`` event) and records
    notes.

Architecture position:
    Kernel > Services -- imperative shell, owns transaction boundaries.
    Composes EventStore, SLATracker and OutboundService, which are all
    flush-only.  Called by the workflow coordinators and the outbound
    handlers.

Transition flow:
    attempt_transition(entity_id, domain, requested_state, actor, notes, ...)
      1. Lock the entity row (SELECT ... FOR UPDATE, populate_existing)
      2. Idempotency short-circuit when the key was already applied
      3. Pure validation against allowed_transitions -- no writes on failure
      4. Persist new state (+ attribute updates), version bumps via CAS
      5. Append status_change event
      6. Upsert or clear the SLA record
      7. Record the outbound event
      8. Commit (or roll everything back)

Invariants enforced:
    - Validation happens before the first write, so an illegal request
      leaves entity, events and SLA untouched.
    - Entity + event + SLA + outbound are committed together or not at all.
    - Same-entity transitions are serialized by the row lock (PostgreSQL)
      and by the ``version`` compare-and-swap on every backend.
    - Self-transitions are illegal unless the table lists them.
    - Child creates lock the parent row and bump its version, so rules over
      a parent's children (one active return, one shipment) hold under
      concurrency.

Failure modes:
    - ILLEGAL_TRANSITION / ENTITY_NOT_FOUND: returned, never raised.
    - ConcurrentTransitionError: version conflict, rolled back, retryable.
    - WorkflowValidationError: duplicate reference or second shipment for
      an order, including when a unique constraint catches it at flush.
    - PersistenceFailureError: any other database failure, rolled back,
      retryable.

Audit relevance:
    Every attempt is logged with entity_id, domain and actor_id bound in
    LogContext, the outcome status and timing.  Idempotent repeats log
    ``transition_already_applied``; nothing was written for them.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from lifecycle_kernel.domain.clock import Clock, SystemClock
from lifecycle_kernel.domain.definitions import DEFAULT_REGISTRY
from lifecycle_kernel.domain.dtos import Actor, EntitySnapshot, EventRecord
from lifecycle_kernel.domain.state_machine import (
    StateMachineRegistry,
    TransitionOption,
)
from lifecycle_kernel.domain.states import Domain, EventType
from lifecycle_kernel.exceptions import (
    ConcurrentTransitionError,
    EntityNotFoundError,
    IllegalTransitionError,
    LifecycleKernelError,
    PersistenceFailureError,
    WorkflowValidationError,
)
from lifecycle_kernel.logging_config import LogContext, get_logger
from lifecycle_kernel.models.lifecycle_entity import LifecycleEntity
from lifecycle_kernel.models.lifecycle_event import LifecycleEvent
from lifecycle_kernel.services.event_store import EventStore, NewEvent, to_event_record
from lifecycle_kernel.services.outbound_service import OutboundService
from lifecycle_kernel.services.sla_tracker import SLATracker

logger = get_logger("services.transition_engine")

# Receives the locked parent (None when absent) and its existing children of
# the domain being created; raises to abort the create.
ParentCheck = Callable[[EntitySnapshot | None, list[EntitySnapshot]], None]

# Unique constraints whose violation is a caller error, not a retryable failure.
# Markers cover the PostgreSQL constraint name and the SQLite column list.
_UNIQUE_VIOLATIONS: tuple[tuple[tuple[str, ...], str, str], ...] = (
    (
        ("uq_entity_domain_reference", "lifecycle_entities.domain, lifecycle_entities.reference"),
        "reference",
        "Reference already exists",
    ),
    (
        ("uq_entity_one_shipment_per_order", "lifecycle_entities.parent_id"),
        "order",
        "Shipment already exists for this order",
    ),
)


def _unique_violation(exc: IntegrityError) -> tuple[str, str] | None:
    detail = str(exc.orig)
    for markers, field, reason in _UNIQUE_VIOLATIONS:
        if any(marker in detail for marker in markers):
            return field, reason
    return None


class TransitionStatus(str, Enum):
    """Outcome of an engine operation."""

    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    ILLEGAL_TRANSITION = "illegal_transition"
    ENTITY_NOT_FOUND = "entity_not_found"


@dataclass(frozen=True)
class TransitionResult:
    """Result of a create, transition or note operation."""

    status: TransitionStatus
    domain: Domain
    entity_id: UUID
    requested_state: str | None = None
    from_state: str | None = None
    entity: EntitySnapshot | None = None
    event: EventRecord | None = None
    outbound_id: UUID | None = None
    allowed: tuple[TransitionOption, ...] = ()
    message: str | None = None

    @property
    def is_success(self) -> bool:
        """Check if the operation succeeded (including idempotent success)."""
        return self.status in (
            TransitionStatus.APPLIED,
            TransitionStatus.ALREADY_APPLIED,
        )

    def allowed_dicts(self) -> list[dict[str, str]]:
        return [option.to_dict() for option in self.allowed]

    def raise_for_status(self) -> TransitionResult:
        """Return self on success, otherwise raise the matching typed error."""
        if self.status is TransitionStatus.ILLEGAL_TRANSITION:
            raise IllegalTransitionError(
                domain=self.domain.value,
                from_state=self.from_state or "",
                to_state=self.requested_state or "",
                allowed=self.allowed_dicts(),
            )
        if self.status is TransitionStatus.ENTITY_NOT_FOUND:
            raise EntityNotFoundError(str(self.entity_id), self.domain.value)
        return self

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.is_success,
            "status": self.status.value,
            "domain": self.domain.value,
            "entity_id": str(self.entity_id),
            "message": self.message,
        }
        if self.status is TransitionStatus.ILLEGAL_TRANSITION:
            payload["from_state"] = self.from_state
            payload["requested_state"] = self.requested_state
            payload["allowed_transitions"] = self.allowed_dicts()
        return payload


def to_entity_snapshot(entity: LifecycleEntity) -> EntitySnapshot:
    return EntitySnapshot(
        entity_id=entity.id,
        domain=Domain(entity.domain),
        reference=entity.reference,
        current_state=entity.current_state,
        version=entity.version,
        parent_id=entity.parent_id,
        owner_id=entity.owner_id,
        attributes=dict(entity.attributes or {}),
        created_at=entity.created_at,
        updated_at=entity.updated_at,
    )


class TransitionEngine:
    """
    Validates and atomically applies lifecycle changes.

    Contract:
        ``attempt_transition`` returns a ``TransitionResult``.  Caller errors
        (illegal move, unknown entity) come back as result statuses; database
        failures raise ``PersistenceFailureError`` after a full rollback.

    Guarantees:
        - With ``auto_commit=True`` (default) the engine commits on APPLIED
          and rolls back on every other outcome, releasing the row lock.
        - With ``auto_commit=False`` the caller owns commit/rollback; the
          engine still flushes and still never writes on a rejected request.

    Non-goals:
        - Does NOT run post-commit handlers; coordinators hand the returned
          ``outbound_id`` to the OutboundDispatcher.
        - Does NOT check ownership or reasons; those are workflow rules.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        registry: StateMachineRegistry | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._registry = registry or DEFAULT_REGISTRY
        self._auto_commit = auto_commit

        self._event_store = EventStore(session, self._clock)
        self._sla_tracker = SLATracker(session, self._clock, self._registry)
        self._outbound = OutboundService(session, self._clock)

    @property
    def registry(self) -> StateMachineRegistry:
        return self._registry

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def create_entity(
        self,
        domain: Domain | str,
        reference: str,
        actor: Actor,
        *,
        parent_id: UUID | None = None,
        owner_id: str | None = None,
        attributes: dict[str, Any] | None = None,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
        entity_id: UUID | None = None,
        parent_check: ParentCheck | None = None,
    ) -> TransitionResult:
        """
        Create an entity in its domain's initial state.

        Writes the entity, its ``created`` event, its SLA record (when the
        initial state owes a deadline) and its outbound row atomically.

        With a ``parent_id`` the parent row is locked and its version bumped
        in the same unit, so creates under one parent serialize.
        ``parent_check(parent, siblings)`` runs after the lock with the
        parent snapshot (None when absent) and the existing children of
        this domain; raising from it aborts the unit.

        Raises:
            WorkflowValidationError: reference already used in this domain,
                or raised by ``parent_check``.
            PersistenceFailureError: commit failed; nothing was written.
        """
        domain = Domain(domain)
        entity_id = entity_id or uuid4()

        def work() -> TransitionResult:
            if self._reference_taken(domain, reference):
                raise WorkflowValidationError(
                    "reference", f"{domain.value} {reference} already exists"
                )
            if parent_id is not None:
                self._guard_parent(parent_id, domain, parent_check)

            definition = self._registry.for_domain(domain)
            initial = definition.initial_state.value
            now = self._clock.now()

            entity = LifecycleEntity(
                id=entity_id,
                domain=domain.value,
                reference=reference,
                current_state=initial,
                parent_id=parent_id,
                owner_id=owner_id,
                attributes=dict(attributes or {}),
                event_count=0,
                created_at=now,
                updated_at=now,
                created_by_id=actor.actor_id,
            )
            self._session.add(entity)

            event_id = self._event_store.append(
                entity,
                NewEvent(
                    event_type=EventType.CREATED,
                    actor=actor,
                    previous_state=None,
                    new_state=initial,
                    notes=notes,
                    metadata=metadata,
                ),
                occurred_at=now,
            )
            self._sla_tracker.on_transition(entity_id, domain, initial, now)
            outbound_id = self._outbound.record(
                entity,
                source_event_id=event_id,
                event_type=EventType.CREATED.value,
                previous_state=None,
                new_state=initial,
                payload=self._outbound_payload(entity, actor, metadata),
                now=now,
            )
            self._session.flush()

            return TransitionResult(
                status=TransitionStatus.APPLIED,
                domain=domain,
                entity_id=entity_id,
                requested_state=initial,
                entity=to_entity_snapshot(entity),
                event=self._event_record(event_id),
                outbound_id=outbound_id,
                message=f"{definition.display_name(initial)} {domain.value} created",
            )

        return self._run_unit("create", domain, entity_id, actor, work)

    def attempt_transition(
        self,
        entity_id: UUID,
        domain: Domain | str,
        requested_state: str | Enum,
        actor: Actor,
        notes: str | None = None,
        *,
        metadata: dict[str, Any] | None = None,
        attributes: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """
        Move an entity to ``requested_state`` if the lifecycle table allows it.

        Args:
            entity_id: Entity to transition.
            domain: Domain the caller believes the entity belongs to.
            requested_state: Target state (enum member or raw value).
            actor: Who requested the change.
            notes: Free-text notes stored on the event.
            metadata: Opaque metadata stored on the event and forwarded to
                outbound handlers (e.g. ``notify_actor``).
            attributes: Business fields merged into the entity in the same
                unit of work.
            idempotency_key: When already applied to this entity, the prior
                event is returned as ALREADY_APPLIED and nothing is written.

        Returns:
            TransitionResult with status APPLIED, ALREADY_APPLIED,
            ILLEGAL_TRANSITION (carrying ``allowed``) or ENTITY_NOT_FOUND.

        Raises:
            ConcurrentTransitionError: lost a version race; safe to retry.
            PersistenceFailureError: commit failed; safe to retry.
        """
        domain = Domain(domain)
        requested = requested_state.value if isinstance(requested_state, Enum) else str(requested_state)

        def work() -> TransitionResult:
            entity = self._lock_entity(entity_id, domain)
            if entity is None:
                return self._not_found(entity_id, domain, requested)

            if idempotency_key:
                prior = self._event_store.find_by_idempotency_key(entity_id, idempotency_key)
                if prior is not None:
                    return TransitionResult(
                        status=TransitionStatus.ALREADY_APPLIED,
                        domain=domain,
                        entity_id=entity_id,
                        requested_state=requested,
                        from_state=prior.previous_state,
                        entity=to_entity_snapshot(entity),
                        event=prior,
                        message="Transition already applied for this idempotency key",
                    )

            definition = self._registry.for_domain(domain)
            current = entity.current_state

            # Pure validation: nothing has been written yet.
            if not definition.is_allowed(current, requested):
                allowed = tuple(definition.transition_options(current))
                return TransitionResult(
                    status=TransitionStatus.ILLEGAL_TRANSITION,
                    domain=domain,
                    entity_id=entity_id,
                    requested_state=requested,
                    from_state=current,
                    entity=to_entity_snapshot(entity),
                    allowed=allowed,
                    message=(
                        f'Invalid status transition from "{definition.display_name(current)}" '
                        f'to "{definition.display_name(requested)}"'
                    ),
                )

            now = self._clock.now()
            entity.current_state = requested
            entity.updated_at = now
            if attributes:
                entity.attributes = {**(entity.attributes or {}), **attributes}

            event_id = self._event_store.append(
                entity,
                NewEvent(
                    event_type=EventType.STATUS_CHANGE,
                    actor=actor,
                    previous_state=current,
                    new_state=requested,
                    notes=notes,
                    metadata=metadata,
                    idempotency_key=idempotency_key,
                ),
                occurred_at=now,
            )
            self._sla_tracker.on_transition(entity_id, domain, requested, now)
            outbound_id = self._outbound.record(
                entity,
                source_event_id=event_id,
                event_type=EventType.STATUS_CHANGE.value,
                previous_state=current,
                new_state=requested,
                payload=self._outbound_payload(entity, actor, metadata),
                now=now,
            )
            self._session.flush()

            return TransitionResult(
                status=TransitionStatus.APPLIED,
                domain=domain,
                entity_id=entity_id,
                requested_state=requested,
                from_state=current,
                entity=to_entity_snapshot(entity),
                event=self._event_record(event_id),
                outbound_id=outbound_id,
                allowed=tuple(definition.transition_options(requested)),
                message=f"{domain.value} status updated to {definition.display_name(requested)}",
            )

        return self._run_unit("transition", domain, entity_id, actor, work, requested)

    def record_note(
        self,
        entity_id: UUID,
        domain: Domain | str,
        actor: Actor,
        note: str,
        *,
        metadata: dict[str, Any] | None = None,
        attributes: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """
        Append a ``note_added`` event without changing state or SLA.

        ``attributes`` (e.g. a new tracking number) are merged into the
        entity in the same unit of work.

        Raises:
            WorkflowValidationError: the note is empty.
        """
        domain = Domain(domain)
        if not note or not note.strip():
            raise WorkflowValidationError("note", "Note is required")

        def work() -> TransitionResult:
            entity = self._lock_entity(entity_id, domain)
            if entity is None:
                return self._not_found(entity_id, domain, None)

            now = self._clock.now()
            entity.updated_at = now
            if attributes:
                entity.attributes = {**(entity.attributes or {}), **attributes}

            event_id = self._event_store.append(
                entity,
                NewEvent(
                    event_type=EventType.NOTE_ADDED,
                    actor=actor,
                    notes=note.strip(),
                    metadata=metadata,
                ),
                occurred_at=now,
            )
            self._session.flush()

            return TransitionResult(
                status=TransitionStatus.APPLIED,
                domain=domain,
                entity_id=entity_id,
                from_state=entity.current_state,
                entity=to_entity_snapshot(entity),
                event=self._event_record(event_id),
                message="Note added successfully",
            )

        return self._run_unit("note", domain, entity_id, actor, work)

    # -------------------------------------------------------------------------
    # Unit of work
    # -------------------------------------------------------------------------

    def _run_unit(
        self,
        operation: str,
        domain: Domain,
        entity_id: UUID,
        actor: Actor,
        work: Callable[[], TransitionResult],
        requested_state: str | None = None,
    ) -> TransitionResult:
        with LogContext.bind(
            entity_id=str(entity_id),
            domain=domain.value,
            actor_id=actor.actor_id,
        ):
            logger.info(
                "transition_started",
                extra={
                    "operation": operation,
                    "requested_state": requested_state,
                    "actor_type": actor.actor_type.value,
                },
            )
            t0 = time.monotonic()

            try:
                result = work()
                if self._auto_commit:
                    if result.status is TransitionStatus.APPLIED:
                        self._session.commit()
                    else:
                        self._session.rollback()
            except StaleDataError as exc:
                self._rollback()
                logger.warning(
                    "transition_failed",
                    extra={"operation": operation, "reason": "version_conflict"},
                )
                raise ConcurrentTransitionError(str(entity_id)) from exc
            except LifecycleKernelError as exc:
                self._rollback()
                logger.warning(
                    "transition_failed",
                    extra={"operation": operation, "reason": exc.code},
                )
                raise
            except IntegrityError as exc:
                self._rollback()
                violation = _unique_violation(exc)
                if violation is None:
                    logger.error(
                        "transition_failed",
                        extra={"operation": operation, "reason": "persistence"},
                        exc_info=True,
                    )
                    raise PersistenceFailureError(
                        operation=operation,
                        entity_id=str(entity_id),
                        detail=exc.__class__.__name__,
                    ) from exc
                field, reason = violation
                logger.warning(
                    "transition_failed",
                    extra={"operation": operation, "reason": "unique_violation", "field": field},
                )
                raise WorkflowValidationError(field, reason) from exc
            except SQLAlchemyError as exc:
                self._rollback()
                logger.error(
                    "transition_failed",
                    extra={"operation": operation, "reason": "persistence"},
                    exc_info=True,
                )
                raise PersistenceFailureError(
                    operation=operation,
                    entity_id=str(entity_id),
                    detail=str(exc.__class__.__name__),
                ) from exc
            except Exception:
                self._rollback()
                logger.error(
                    "transition_failed",
                    extra={"operation": operation, "reason": "unexpected"},
                    exc_info=True,
                )
                raise

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            if result.status is TransitionStatus.ALREADY_APPLIED:
                logger.info(
                    "transition_already_applied",
                    extra={
                        "operation": operation,
                        "status": result.status.value,
                        "event_id": str(result.event.event_id) if result.event else None,
                        "duration_ms": duration_ms,
                    },
                )
            elif result.is_success:
                logger.info(
                    "transition_committed",
                    extra={
                        "operation": operation,
                        "status": result.status.value,
                        "from_state": result.from_state,
                        "to_state": result.requested_state,
                        "duration_ms": duration_ms,
                    },
                )
            else:
                logger.info(
                    "transition_rejected",
                    extra={
                        "operation": operation,
                        "status": result.status.value,
                        "from_state": result.from_state,
                        "to_state": result.requested_state,
                        "allowed": [o.state for o in result.allowed],
                        "duration_ms": duration_ms,
                    },
                )
            return result

    def _rollback(self) -> None:
        if self._auto_commit:
            self._session.rollback()

    def _reference_taken(self, domain: Domain, reference: str) -> bool:
        return self._session.execute(
            select(LifecycleEntity.id).where(
                LifecycleEntity.domain == domain.value,
                LifecycleEntity.reference == reference,
            )
        ).first() is not None

    def _guard_parent(
        self,
        parent_id: UUID,
        domain: Domain,
        parent_check: ParentCheck | None,
    ) -> None:
        """Lock the parent, run ``parent_check`` and bump the parent version."""
        parent = self._session.execute(
            select(LifecycleEntity)
            .where(LifecycleEntity.id == parent_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if parent_check is not None:
            siblings = self._session.execute(
                select(LifecycleEntity)
                .where(
                    LifecycleEntity.parent_id == parent_id,
                    LifecycleEntity.domain == domain.value,
                )
                .order_by(LifecycleEntity.created_at)
                .execution_options(populate_existing=True)
            ).scalars().all()
            parent_check(
                to_entity_snapshot(parent) if parent is not None else None,
                [to_entity_snapshot(sibling) for sibling in siblings],
            )
        if parent is not None:
            # Version CAS on the parent: a concurrent create under the same
            # parent fails with StaleDataError at flush.
            flag_modified(parent, "updated_at")

    def _lock_entity(self, entity_id: UUID, domain: Domain) -> LifecycleEntity | None:
        """Read the entity's persisted state under a row lock."""
        entity = self._session.execute(
            select(LifecycleEntity)
            .where(LifecycleEntity.id == entity_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entity is None or entity.domain != domain.value:
            return None
        return entity

    def _not_found(
        self, entity_id: UUID, domain: Domain, requested: str | None
    ) -> TransitionResult:
        return TransitionResult(
            status=TransitionStatus.ENTITY_NOT_FOUND,
            domain=domain,
            entity_id=entity_id,
            requested_state=requested,
            message=f"{domain.value} not found",
        )

    def _event_record(self, event_id: UUID) -> EventRecord:
        return to_event_record(self._session.get(LifecycleEvent, event_id))

    @staticmethod
    def _outbound_payload(
        entity: LifecycleEntity,
        actor: Actor,
        metadata: dict[str, Any] | None,
    ) -> dict[str, Any]:
        metadata = metadata or {}
        return {
            "reference": entity.reference,
            "parent_id": str(entity.parent_id) if entity.parent_id else None,
            "owner_id": entity.owner_id,
            "actor_type": actor.actor_type.value,
            "actor_id": actor.actor_id,
            "notify_actor": bool(metadata.get("notify_actor", True)),
            "metadata": dict(metadata),
        }
