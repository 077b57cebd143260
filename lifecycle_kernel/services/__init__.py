"""Services for the lifecycle kernel (write side)."""

from lifecycle_kernel.services.event_store import EventStore, NewEvent
from lifecycle_kernel.services.outbound_service import OutboundService
from lifecycle_kernel.services.sla_tracker import SLATracker
from lifecycle_kernel.services.transition_engine import (
    TransitionEngine,
    TransitionResult,
    TransitionStatus,
)

__all__ = [
    "EventStore",
    "NewEvent",
    "OutboundService",
    "SLATracker",
    "TransitionEngine",
    "TransitionResult",
    "TransitionStatus",
]
