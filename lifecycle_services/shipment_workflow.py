"""
ShipmentWorkflow -- shipment lifecycle operations.

A shipment is created for an order that is ready for shipping, one per
order, with a known carrier.  Carrier progress updates carry an optional
location and description in the event metadata.  Keeping the parent order
in step (shipped on creation, delivered on delivery) is the job of
``handlers.ShipmentOrderSyncHandler``.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from lifecycle_kernel.domain.dtos import Actor, EntitySnapshot
from lifecycle_kernel.domain.states import Domain, OrderState, ShipmentState
from lifecycle_kernel.exceptions import EntityNotFoundError, WorkflowValidationError
from lifecycle_kernel.services.transition_engine import TransitionResult
from lifecycle_services.workflow_coordinator import WorkflowCoordinator

# code -> (name, tracking URL template)
CARRIERS: dict[str, tuple[str, str]] = {
    "fedex": ("FedEx", "https://www.fedex.com/fedextrack/?trknbr={tracking_number}"),
    "ups": ("UPS", "https://www.ups.com/track?tracknum={tracking_number}"),
    "usps": ("USPS", "https://tools.usps.com/go/TrackConfirmAction?tLabels={tracking_number}"),
    "dhl": ("DHL", "https://www.dhl.com/en/express/tracking.html?AWB={tracking_number}"),
    "bluedart": ("BlueDart", "https://www.bluedart.com/tracking/{tracking_number}"),
    "local": ("Local Delivery", ""),
}

_IN_FLIGHT = frozenset(
    {
        ShipmentState.PICKED_UP.value,
        ShipmentState.IN_TRANSIT.value,
        ShipmentState.AT_FACILITY.value,
        ShipmentState.OUT_FOR_DELIVERY.value,
        ShipmentState.DELAYED.value,
    }
)


def tracking_url(carrier: str, tracking_number: str | None) -> str | None:
    """Carrier tracking link, or None without a number or a template."""
    template = CARRIERS.get(carrier, ("", ""))[1]
    if not tracking_number or not template:
        return None
    return template.replace("{tracking_number}", tracking_number)


class ShipmentWorkflow(WorkflowCoordinator):
    domain = Domain.SHIPMENT

    def flags(self, state: str) -> dict[str, bool]:
        return {
            **super().flags(state),
            "is_in_flight": state in _IN_FLIGHT,
            "is_delivered": state == ShipmentState.DELIVERED.value,
        }

    @staticmethod
    def carrier_options() -> list[dict[str, str]]:
        return [
            {"code": code, "name": name, "tracking_url_template": template}
            for code, (name, template) in CARRIERS.items()
        ]

    def create_shipment(
        self,
        order_id: UUID,
        carrier: str,
        reference: str,
        actor: Actor,
        tracking_number: str | None = None,
        estimated_delivery: str | None = None,
        attributes: dict[str, Any] | None = None,
        notes: str | None = None,
    ) -> TransitionResult:
        """
        Create the shipment for an order.

        The state and one-shipment checks run inside the create unit with
        the order row locked; the partial unique index on ``parent_id``
        backs the one-shipment rule at the database.

        Raises:
            EntityNotFoundError: the order does not exist.
            WorkflowValidationError: order not ready for shipping, a shipment
                already exists, or the carrier is unknown.
        """
        order = self._selector.get_snapshot(order_id, Domain.ORDER)
        if order is None:
            raise EntityNotFoundError(str(order_id), Domain.ORDER.value)
        if carrier not in CARRIERS:
            raise WorkflowValidationError("carrier", "Invalid carrier")

        def check_order(
            locked: EntitySnapshot | None, existing: list[EntitySnapshot]
        ) -> None:
            if locked is None or locked.domain is not Domain.ORDER:
                raise EntityNotFoundError(str(order_id), Domain.ORDER.value)
            if locked.current_state != OrderState.READY_FOR_SHIPPING.value:
                raise WorkflowValidationError(
                    "order", "Order must be ready for shipping to create a shipment"
                )
            if existing:
                raise WorkflowValidationError("order", "Shipment already exists for this order")

        return self._create(
            reference,
            actor,
            parent_id=order_id,
            owner_id=order.owner_id,
            attributes={
                **(attributes or {}),
                "carrier": carrier,
                "tracking_number": tracking_number,
                "tracking_url": tracking_url(carrier, tracking_number),
                "estimated_delivery": estimated_delivery,
            },
            notes=notes or f"Shipment created with {CARRIERS[carrier][0]}",
            parent_check=check_order,
        )

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
        location: str | None = None,
        description: str | None = None,
    ) -> TransitionResult:
        description = description or (
            f"Status updated to {self.definition.display_name(requested_state)}"
        )
        stamps = dict(attributes or {})
        if requested_state == ShipmentState.DELIVERED.value:
            stamps.setdefault("actual_delivery", self._now_iso())
        return super().transition(
            entity_id,
            requested_state,
            actor,
            notes or description,
            notify_actor=notify_actor,
            idempotency_key=idempotency_key,
            metadata={**(metadata or {}), "location": location, "description": description},
            attributes=stamps,
        )

    def update_tracking(
        self, shipment_id: UUID, tracking_number: str, actor: Actor
    ) -> TransitionResult:
        if not tracking_number or not tracking_number.strip():
            raise WorkflowValidationError("tracking_number", "Tracking number is required")
        shipment = self.snapshot(shipment_id)
        tracking_number = tracking_number.strip()
        carrier = shipment.attributes.get("carrier", "")
        return self.add_note(
            shipment_id,
            actor,
            f"Tracking number updated: {tracking_number}",
            attributes={
                "tracking_number": tracking_number,
                "tracking_url": tracking_url(carrier, tracking_number),
            },
        )
