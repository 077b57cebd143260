"""
Lifecycle vocabulary: domains, per-domain state enums, event and actor types.

Each domain's states form a closed ``str`` Enum so that a misspelled or
unknown state can never be constructed silently; the string values are the
persisted representation.
"""

from enum import Enum


class Domain(str, Enum):
    """Business entity families that own a lifecycle."""

    ORDER = "order"
    RETURN_REQUEST = "return_request"
    SHIPMENT = "shipment"


class EventType(str, Enum):
    """Kinds of rows in the lifecycle event log."""

    CREATED = "created"
    STATUS_CHANGE = "status_change"
    NOTE_ADDED = "note_added"


class ActorType(str, Enum):
    """Who initiated an event."""

    ADMIN = "admin"
    USER = "user"
    SYSTEM = "system"


class OrderState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    READY_FOR_SHIPPING = "ready_for_shipping"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    FAILED_DELIVERY = "failed_delivery"
    CANCELLED = "cancelled"
    RETURNED = "returned"
    REFUND_REQUESTED = "refund_requested"
    REFUND_PROCESSING = "refund_processing"
    REFUND_REJECTED = "refund_rejected"
    REFUNDED = "refunded"


class ReturnState(str, Enum):
    PENDING = "pending"
    MORE_INFO_NEEDED = "more_info_needed"
    APPROVED = "approved"
    REJECTED = "rejected"
    PICKUP_SCHEDULED = "pickup_scheduled"
    PICKUP_FAILED = "pickup_failed"
    AWAITING_RETURN = "awaiting_return"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    RECEIVED = "received"
    INSPECTING = "inspecting"
    INSPECTION_PASSED = "inspection_passed"
    INSPECTION_FAILED = "inspection_failed"
    REFUND_INITIATED = "refund_initiated"
    REFUND_PARTIAL = "refund_partial"
    REPLACEMENT_INITIATED = "replacement_initiated"
    COMPLETED = "completed"


class ShipmentState(str, Enum):
    PENDING = "pending"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    AT_FACILITY = "at_facility"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    FAILED_ATTEMPT = "failed_attempt"
    DELAYED = "delayed"
    RETURNED_TO_SENDER = "returned_to_sender"
    CANCELLED = "cancelled"
