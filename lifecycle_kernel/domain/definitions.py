"""
Lifecycle tables for the Order, ReturnRequest and Shipment domains.

Rows are ``state: (display_name, sla_hours, allowed_next)``.  An SLA of 0
means no deadline is owed in that state; the SLA record is removed on entry.
Building ``DEFAULT_REGISTRY`` validates every table at import time.
"""

from lifecycle_kernel.domain.state_machine import (
    StateMachineDefinition,
    StateMachineRegistry,
)
from lifecycle_kernel.domain.states import (
    Domain,
    OrderState,
    ReturnState,
    ShipmentState,
)

O = OrderState
R = ReturnState
S = ShipmentState


ORDER_MACHINE = StateMachineDefinition.build(
    domain=Domain.ORDER,
    state_enum=OrderState,
    initial_state=O.PENDING,
    rows={
        O.PENDING: ("Pending", 2, (O.CONFIRMED, O.CANCELLED)),
        O.CONFIRMED: ("Confirmed", 4, (O.PROCESSING, O.CANCELLED)),
        O.PROCESSING: ("Processing", 24, (O.READY_FOR_SHIPPING, O.CANCELLED)),
        O.READY_FOR_SHIPPING: ("Ready for Shipping", 12, (O.SHIPPED, O.CANCELLED)),
        O.SHIPPED: ("Shipped", 72, (O.OUT_FOR_DELIVERY, O.DELIVERED, O.RETURNED)),
        O.OUT_FOR_DELIVERY: ("Out for Delivery", 24, (O.DELIVERED, O.FAILED_DELIVERY)),
        # Deadline-free but not terminal: refunds can still be requested.
        O.DELIVERED: ("Delivered", 0, (O.REFUND_REQUESTED,)),
        O.FAILED_DELIVERY: (
            "Failed Delivery", 48, (O.OUT_FOR_DELIVERY, O.RETURNED, O.CANCELLED),
        ),
        O.CANCELLED: ("Cancelled", 0, ()),
        O.RETURNED: ("Returned", 24, (O.REFUND_PROCESSING,)),
        O.REFUND_REQUESTED: (
            "Refund Requested", 48, (O.REFUND_PROCESSING, O.REFUND_REJECTED),
        ),
        O.REFUND_PROCESSING: ("Refund Processing", 72, (O.REFUNDED,)),
        O.REFUND_REJECTED: ("Refund Rejected", 0, ()),
        O.REFUNDED: ("Refunded", 0, ()),
    },
)


RETURN_MACHINE = StateMachineDefinition.build(
    domain=Domain.RETURN_REQUEST,
    state_enum=ReturnState,
    initial_state=R.PENDING,
    rows={
        R.PENDING: ("Pending Review", 48, (R.APPROVED, R.REJECTED, R.MORE_INFO_NEEDED)),
        R.MORE_INFO_NEEDED: ("More Info Needed", 72, (R.PENDING, R.APPROVED, R.REJECTED)),
        R.APPROVED: ("Approved", 24, (R.PICKUP_SCHEDULED, R.AWAITING_RETURN)),
        R.REJECTED: ("Rejected", 0, ()),
        R.PICKUP_SCHEDULED: ("Pickup Scheduled", 48, (R.PICKED_UP, R.PICKUP_FAILED)),
        R.PICKUP_FAILED: ("Pickup Failed", 24, (R.PICKUP_SCHEDULED, R.AWAITING_RETURN)),
        R.AWAITING_RETURN: ("Awaiting Return", 168, (R.RECEIVED,)),
        R.PICKED_UP: ("Picked Up", 24, (R.IN_TRANSIT,)),
        R.IN_TRANSIT: ("In Transit", 72, (R.RECEIVED,)),
        R.RECEIVED: ("Received", 24, (R.INSPECTING,)),
        R.INSPECTING: (
            "Quality Inspection", 48, (R.INSPECTION_PASSED, R.INSPECTION_FAILED),
        ),
        R.INSPECTION_PASSED: (
            "Inspection Passed", 24, (R.REFUND_INITIATED, R.REPLACEMENT_INITIATED),
        ),
        R.INSPECTION_FAILED: ("Inspection Failed", 24, (R.REFUND_PARTIAL, R.REJECTED)),
        R.REFUND_INITIATED: ("Refund Initiated", 72, (R.COMPLETED,)),
        R.REFUND_PARTIAL: ("Partial Refund Initiated", 72, (R.COMPLETED,)),
        R.REPLACEMENT_INITIATED: ("Replacement Initiated", 72, (R.COMPLETED,)),
        R.COMPLETED: ("Completed", 0, ()),
    },
)


SHIPMENT_MACHINE = StateMachineDefinition.build(
    domain=Domain.SHIPMENT,
    state_enum=ShipmentState,
    initial_state=S.PENDING,
    rows={
        S.PENDING: ("Pending", 24, (S.PICKED_UP, S.CANCELLED)),
        S.PICKED_UP: ("Picked Up", 12, (S.IN_TRANSIT, S.RETURNED_TO_SENDER)),
        S.IN_TRANSIT: (
            "In Transit",
            72,
            (S.OUT_FOR_DELIVERY, S.AT_FACILITY, S.DELAYED, S.RETURNED_TO_SENDER),
        ),
        S.AT_FACILITY: ("At Facility", 24, (S.IN_TRANSIT, S.OUT_FOR_DELIVERY)),
        S.OUT_FOR_DELIVERY: ("Out for Delivery", 24, (S.DELIVERED, S.FAILED_ATTEMPT)),
        S.DELIVERED: ("Delivered", 0, ()),
        S.FAILED_ATTEMPT: (
            "Failed Attempt", 24, (S.OUT_FOR_DELIVERY, S.RETURNED_TO_SENDER),
        ),
        S.DELAYED: ("Delayed", 48, (S.IN_TRANSIT, S.RETURNED_TO_SENDER)),
        S.RETURNED_TO_SENDER: ("Returned to Sender", 0, ()),
        S.CANCELLED: ("Cancelled", 0, ()),
    },
)


DEFAULT_REGISTRY = StateMachineRegistry(
    (ORDER_MACHINE, RETURN_MACHINE, SHIPMENT_MACHINE)
)


def get_definition(domain: Domain | str) -> StateMachineDefinition:
    return DEFAULT_REGISTRY.for_domain(domain)
