"""
Typed Exception Hierarchy for the Lifecycle Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the lifecycle engine (HTTP adapters, the operator CLI, the outbound
handlers) must react to failures precisely. Every error therefore has:

  1. A TYPED exception class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe)
  3. Structured DATA attributes (not just a message string)

Example:
    try:
        result.raise_for_status()
    except IllegalTransitionError as e:
        api_response(code=e.code, allowed=e.allowed)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from LifecycleKernelError:

    LifecycleKernelError (base)
    |
    +-- TransitionError
    |   +-- IllegalTransitionError
    |   +-- EntityNotFoundError
    |   +-- WorkflowValidationError
    |
    +-- PersistenceFailureError
    |   +-- ConcurrentTransitionError
    |
    +-- ConfigurationError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |   +-- UnrecordedStateChangeError
    |
    +-- OutboundError
        +-- OutboundTransitionError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Transition      | ILLEGAL_TRANSITION          | Requested state not in allowed set
                | ENTITY_NOT_FOUND            | No entity with that id in that domain
                | WORKFLOW_VALIDATION         | Domain precondition failed (reason, owner)
----------------|-----------------------------|-----------------------------------------
Persistence     | PERSISTENCE_FAILURE         | Atomic commit failed, nothing applied
                | CONCURRENT_TRANSITION       | Entity version changed underneath us
----------------|-----------------------------|-----------------------------------------
Configuration   | CONFIGURATION_ERROR         | Incomplete state table or bad settings
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Update/delete of an event row
                | UNRECORDED_STATE_CHANGE     | current_state changed without an event
----------------|-----------------------------|-----------------------------------------
Outbound        | INVALID_OUTBOUND_TRANSITION | Illegal outbound delivery status change

IllegalTransitionError and EntityNotFoundError are normally RETURNED inside a
TransitionResult rather than raised; TransitionResult.raise_for_status()
converts a failed result into the matching exception at an outer edge.
"""


class LifecycleKernelError(Exception):
    """
    Base exception for all lifecycle kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LIFECYCLE_KERNEL_ERROR"


# Transition-related exceptions


class TransitionError(LifecycleKernelError):
    """Base exception for transition request errors (caller errors)."""

    code: str = "TRANSITION_ERROR"


class IllegalTransitionError(TransitionError):
    """
    Requested state is not reachable from the entity's current state.

    ``allowed`` enumerates the legal alternatives as
    ``[{"state": ..., "display_name": ...}]`` so the caller can self-correct.
    """

    code: str = "ILLEGAL_TRANSITION"

    def __init__(
        self,
        domain: str,
        from_state: str,
        to_state: str,
        allowed: list[dict[str, str]],
    ):
        self.domain = domain
        self.from_state = from_state
        self.to_state = to_state
        self.allowed = allowed
        allowed_str = ", ".join(a["state"] for a in allowed) or "none"
        super().__init__(
            f"Illegal {domain} transition {from_state} -> {to_state} "
            f"(allowed: {allowed_str})"
        )


class EntityNotFoundError(TransitionError):
    """Entity with given ID was not found in the given domain."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_id: str, domain: str):
        self.entity_id = entity_id
        self.domain = domain
        super().__init__(f"{domain} not found: {entity_id}")


class WorkflowValidationError(TransitionError):
    """A domain-level precondition for a workflow operation failed."""

    code: str = "WORKFLOW_VALIDATION"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Persistence-related exceptions


class PersistenceFailureError(LifecycleKernelError):
    """
    The atomic unit of work could not be committed.

    Nothing was applied: entity, event, SLA and outbound rows were rolled
    back together. The operation is safe to retry.
    """

    code: str = "PERSISTENCE_FAILURE"
    retryable: bool = True

    def __init__(self, operation: str, entity_id: str | None, detail: str):
        self.operation = operation
        self.entity_id = entity_id
        self.detail = detail
        super().__init__(
            f"Persistence failure during {operation} on {entity_id}: {detail}"
        )


class ConcurrentTransitionError(PersistenceFailureError):
    """Optimistic version conflict: another transition won the race."""

    code: str = "CONCURRENT_TRANSITION"

    def __init__(self, entity_id: str, expected_version: int | None = None):
        self.expected_version = expected_version
        super().__init__(
            operation="transition",
            entity_id=entity_id,
            detail="entity was modified by another transaction",
        )


# Configuration exceptions


class ConfigurationError(LifecycleKernelError):
    """
    Static configuration is invalid.

    Raised at boot (state table construction, settings loading), never
    while serving a request.
    """

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, reason: str, domain: str | None = None, state: str | None = None):
        self.reason = reason
        self.domain = domain
        self.state = state
        where = f" [{domain}" + (f".{state}" if state else "") + "]" if domain else ""
        super().__init__(f"Configuration error{where}: {reason}")


# Immutability-related exceptions


class ImmutabilityError(LifecycleKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class UnrecordedStateChangeError(ImmutabilityError):
    """current_state was changed without a matching status_change event."""

    code: str = "UNRECORDED_STATE_CHANGE"

    def __init__(self, entity_id: str, from_state: str | None, to_state: str):
        self.entity_id = entity_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"State of {entity_id} changed {from_state} -> {to_state} "
            "without a status_change event in the same flush"
        )


# Outbound delivery exceptions


class OutboundError(LifecycleKernelError):
    """Base exception for outbound delivery errors."""

    code: str = "OUTBOUND_ERROR"


class OutboundTransitionError(OutboundError):
    """Illegal outbound delivery status change."""

    code: str = "INVALID_OUTBOUND_TRANSITION"

    def __init__(self, outbound_id: str, from_status: str, to_status: str):
        self.outbound_id = outbound_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Outbound event {outbound_id} cannot move {from_status} -> {to_status}"
        )
