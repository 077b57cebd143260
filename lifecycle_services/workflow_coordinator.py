"""
WorkflowCoordinator -- per-domain facade over the lifecycle kernel.

Responsibility:
    Binds the TransitionEngine and the EntitySelector to one domain, adds the
    domain's derived flags to entity views, and hands every committed
    outbound row to the OutboundDispatcher after commit.

Architecture position:
    Services -- the surface callers (CLI, API layers, tests) use.  Domain
    subclasses add business operations (create, cancel, approve ...) that
    check their preconditions and then call ``transition``.

Invariants enforced:
    - Derived booleans are pure functions of ``current_state``.
    - Publishing happens only after the engine committed; a publish failure
      never affects the committed transition.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from lifecycle_kernel.domain.clock import Clock, SystemClock
from lifecycle_kernel.domain.definitions import DEFAULT_REGISTRY
from lifecycle_kernel.domain.dtos import Actor, EntitySnapshot, EntityView, TimelineEntry
from lifecycle_kernel.domain.sla import DEFAULT_AT_RISK_WINDOW
from lifecycle_kernel.domain.state_machine import (
    StateMachineDefinition,
    StateMachineRegistry,
    TransitionOption,
)
from lifecycle_kernel.domain.states import Domain, EventType
from lifecycle_kernel.exceptions import EntityNotFoundError
from lifecycle_kernel.logging_config import get_logger
from lifecycle_kernel.selectors.entity_selector import EntityPage, EntitySelector
from lifecycle_kernel.services.transition_engine import (
    ParentCheck,
    TransitionEngine,
    TransitionResult,
    TransitionStatus,
)
from lifecycle_services.outbound_dispatcher import OutboundDispatcher

logger = get_logger("services.workflow")


class WorkflowCoordinator:
    """Domain-bound entry point for reads, transitions and notes.

    Contract:
        ``transition`` returns the engine's TransitionResult unchanged.
        Reads raise ``EntityNotFoundError`` for an unknown id.

    Non-goals:
        - Does NOT re-validate legality; the engine is the single authority.
    """

    domain: Domain

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        registry: StateMachineRegistry | None = None,
        dispatcher: OutboundDispatcher | None = None,
        at_risk_window: timedelta = DEFAULT_AT_RISK_WINDOW,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._registry = registry or DEFAULT_REGISTRY
        self._dispatcher = dispatcher
        self._engine = TransitionEngine(session, self._clock, self._registry)
        self._selector = EntitySelector(
            session, self._clock, self._registry, at_risk_window
        )

    @property
    def definition(self) -> StateMachineDefinition:
        return self._registry.for_domain(self.domain)

    @property
    def engine(self) -> TransitionEngine:
        return self._engine

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def flags(self, state: str) -> dict[str, bool]:
        """Derived booleans for ``state``. Subclasses extend."""
        return {"is_terminal": self.definition.is_terminal(state)}

    def get(self, entity_id: UUID) -> EntityView:
        view = self._selector.get_view(entity_id, self.domain)
        if view is None:
            raise EntityNotFoundError(str(entity_id), self.domain.value)
        return EntityView(
            entity=view.entity,
            state_display=view.state_display,
            available_transitions=view.available_transitions,
            sla=view.sla,
            flags=self.flags(view.entity.current_state),
        )

    def snapshot(self, entity_id: UUID) -> EntitySnapshot:
        snapshot = self._selector.get_snapshot(entity_id, self.domain)
        if snapshot is None:
            raise EntityNotFoundError(str(entity_id), self.domain.value)
        return snapshot

    def available_transitions(self, entity_id: UUID) -> list[TransitionOption]:
        return self.definition.transition_options(self.snapshot(entity_id).current_state)

    def timeline(self, entity_id: UUID) -> list[TimelineEntry]:
        self.snapshot(entity_id)
        return self._selector.timeline(entity_id)

    def status_options(self) -> list[dict]:
        return self.definition.status_options()

    def list_entities(self, **filters: Any) -> EntityPage:
        """Filtered page of this domain; filters as ``EntitySelector.list_entities``."""
        return self._selector.list_entities(self.domain, **filters)

    def list_for_owner(self, owner_id: str, **filters: Any) -> EntityPage:
        """The customer's own entities, newest first unless ``order_by`` says otherwise."""
        return self._selector.list_entities(self.domain, owner_id=str(owner_id), **filters)

    def stats(self, owner_id: str | None = None) -> dict[str, Any]:
        by_state = self._selector.state_counts(self.domain, owner_id)
        return {"total": sum(by_state.values()), "by_state": by_state}

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def transition(
        self,
        entity_id: UUID,
        requested_state: str,
        actor: Actor,
        notes: str | None = None,
        notify_actor: bool = True,
        idempotency_key: str | None = None,
        metadata: dict[str, Any] | None = None,
        attributes: dict[str, Any] | None = None,
    ) -> TransitionResult:
        result = self._engine.attempt_transition(
            entity_id,
            self.domain,
            requested_state,
            actor,
            notes,
            metadata={**(metadata or {}), "notify_actor": notify_actor},
            attributes=attributes,
            idempotency_key=idempotency_key,
        )
        self._publish(result)
        return result

    def add_note(
        self,
        entity_id: UUID,
        actor: Actor,
        note: str,
        metadata: dict[str, Any] | None = None,
        attributes: dict[str, Any] | None = None,
    ) -> TransitionResult:
        return self._engine.record_note(
            entity_id,
            self.domain,
            actor,
            note,
            metadata=metadata,
            attributes=attributes,
        )

    def _create(
        self,
        reference: str,
        actor: Actor,
        *,
        parent_id: UUID | None = None,
        owner_id: str | None = None,
        attributes: dict[str, Any] | None = None,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
        parent_check: ParentCheck | None = None,
    ) -> TransitionResult:
        result = self._engine.create_entity(
            self.domain,
            reference,
            actor,
            parent_id=parent_id,
            owner_id=owner_id,
            attributes=attributes,
            notes=notes,
            metadata=metadata,
            parent_check=parent_check,
        )
        self._publish(result)
        return result

    def _status_events(self, entity_id: UUID) -> list[TimelineEntry]:
        return self._selector.timeline(entity_id, event_types=(EventType.STATUS_CHANGE,))

    def _now_iso(self) -> str:
        return self._clock.now().isoformat()

    def _publish(self, result: TransitionResult) -> None:
        if self._dispatcher is None or result.outbound_id is None:
            return
        if result.status is not TransitionStatus.APPLIED:
            return
        try:
            self._dispatcher.publish(result.outbound_id)
        except Exception:
            # The row stays pending; retry_failed picks it up after the grace period.
            logger.warning(
                "outbound_publish_failed",
                extra={"outbound_id": str(result.outbound_id)},
                exc_info=True,
            )
