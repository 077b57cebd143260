"""
ORM-Level Lifecycle Integrity Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The lifecycle history is the audit record of every order, return and shipment.
Two rules must hold no matter which code path touches the session:

  1. Events are append-only.  A LifecycleEvent row can never be updated or
     deleted; corrections are new note or status_change events.

  2. ``LifecycleEntity.current_state`` never changes silently.  Every change
     (and every new entity) must reach the database in the same flush as the
     status_change (or created) event that records it.  The TransitionEngine
     satisfies this by construction; any other writer is rejected.

===============================================================================
HOW IT WORKS
===============================================================================

    session.flush()
         |
         v
    [before_flush] --> _check_state_changes_recorded() --> UnrecordedStateChangeError
         |
         v
    [before_update / before_delete on LifecycleEvent] --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

If a check fails the flush is aborted and the database is never modified.

===============================================================================
USAGE
===============================================================================

Called from create_tables() and at application startup:

    from lifecycle_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from lifecycle_kernel.domain.states import EventType
from lifecycle_kernel.exceptions import (
    ImmutabilityViolationError,
    UnrecordedStateChangeError,
)
from lifecycle_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _pending_state_events(session: Session) -> dict:
    """Map entity_id -> set of new_state values recorded by pending events."""
    from lifecycle_kernel.models.lifecycle_event import LifecycleEvent

    recorded: dict = {}
    for obj in session.new:
        if not isinstance(obj, LifecycleEvent):
            continue
        if obj.event_type in (EventType.STATUS_CHANGE.value, EventType.CREATED.value):
            recorded.setdefault(obj.entity_id, set()).add(obj.new_state)
    return recorded


def _check_state_changes_recorded(session, flush_context, instances):
    """
    Reject entity state changes that arrive without their event.

    Runs in SessionEvents.before_flush, before the flush plan is finalized.
    """
    from lifecycle_kernel.models.lifecycle_entity import LifecycleEntity

    recorded = None

    for obj in list(session.new) + list(session.dirty):
        if not isinstance(obj, LifecycleEntity):
            continue

        if obj in session.new:
            from_state = None
        else:
            history = inspect(obj).attrs.current_state.history
            if not history.has_changes():
                continue
            from_state = history.deleted[0] if history.deleted else None

        if recorded is None:
            recorded = _pending_state_events(session)

        if obj.current_state in recorded.get(obj.id, set()):
            continue

        logger.error(
            "immutability_violation_blocked",
            extra={
                "entity_type": "LifecycleEntity",
                "entity_id": str(obj.id),
                "operation": "INSERT" if from_state is None else "UPDATE",
                "from_state": from_state,
                "to_state": obj.current_state,
            },
        )
        raise UnrecordedStateChangeError(
            entity_id=str(obj.id),
            from_state=from_state,
            to_state=obj.current_state,
        )


def _check_event_immutability(mapper, connection, target):
    """Prevent any updates to LifecycleEvent records."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "LifecycleEvent",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="LifecycleEvent",
        entity_id=str(target.id),
        reason="Lifecycle events are append-only and cannot be modified",
    )


def _check_event_delete(mapper, connection, target):
    """Prevent deletion of LifecycleEvent records."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "LifecycleEvent",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="LifecycleEvent",
        entity_id=str(target.id),
        reason="Lifecycle events are append-only and cannot be deleted",
    )


def register_immutability_listeners():
    """
    Register all lifecycle integrity event listeners.

    Idempotent: listeners already registered are not added twice.
    """
    from lifecycle_kernel.models.lifecycle_event import LifecycleEvent

    for target, name, fn in _listeners(LifecycleEvent):
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if it was never registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove lifecycle integrity listeners.

    WARNING: Only use this in tests that deliberately violate the rules.
    """
    from lifecycle_kernel.models.lifecycle_event import LifecycleEvent

    for target, name, fn in _listeners(LifecycleEvent):
        _safe_remove_listener(target, name, fn)


def _listeners(event_model):
    return (
        (Session, "before_flush", _check_state_changes_recorded),
        (event_model, "before_update", _check_event_immutability),
        (event_model, "before_delete", _check_event_delete),
    )
