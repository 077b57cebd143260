"""
Pure domain layer.

State machine tables, SLA arithmetic and DTOs with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

Everything here is immutable and deterministic given a Clock.
"""

from lifecycle_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from lifecycle_kernel.domain.definitions import (
    DEFAULT_REGISTRY,
    ORDER_MACHINE,
    RETURN_MACHINE,
    SHIPMENT_MACHINE,
    get_definition,
)
from lifecycle_kernel.domain.dtos import (
    Actor,
    EntitySnapshot,
    EntityView,
    EventRecord,
    TimelineEntry,
)
from lifecycle_kernel.domain.sla import (
    DEFAULT_AT_RISK_WINDOW,
    SLASnapshot,
    SLAStatus,
    build_snapshot,
    compute_deadline,
    derive_status,
)
from lifecycle_kernel.domain.state_machine import (
    StateMachineDefinition,
    StateMachineRegistry,
    StateSpec,
    TransitionOption,
)
from lifecycle_kernel.domain.states import (
    ActorType,
    Domain,
    EventType,
    OrderState,
    ReturnState,
    ShipmentState,
)

__all__ = [
    # Clock
    "Clock",
    "DeterministicClock",
    "SystemClock",
    # States
    "ActorType",
    "Domain",
    "EventType",
    "OrderState",
    "ReturnState",
    "ShipmentState",
    # State machines
    "DEFAULT_REGISTRY",
    "ORDER_MACHINE",
    "RETURN_MACHINE",
    "SHIPMENT_MACHINE",
    "StateMachineDefinition",
    "StateMachineRegistry",
    "StateSpec",
    "TransitionOption",
    "get_definition",
    # SLA
    "DEFAULT_AT_RISK_WINDOW",
    "SLASnapshot",
    "SLAStatus",
    "build_snapshot",
    "compute_deadline",
    "derive_status",
    # DTOs
    "Actor",
    "EntitySnapshot",
    "EntityView",
    "EventRecord",
    "TimelineEntry",
]
