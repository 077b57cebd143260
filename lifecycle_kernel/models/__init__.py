"""ORM models for the lifecycle kernel."""

from lifecycle_kernel.models.lifecycle_entity import LifecycleEntity
from lifecycle_kernel.models.lifecycle_event import LifecycleEvent
from lifecycle_kernel.models.outbound_event import (
    VALID_TRANSITIONS,
    OutboundEvent,
    OutboundStatus,
)
from lifecycle_kernel.models.sla_record import SLARecord

__all__ = [
    "LifecycleEntity",
    "LifecycleEvent",
    "SLARecord",
    "OutboundEvent",
    "OutboundStatus",
    "VALID_TRANSITIONS",
]
