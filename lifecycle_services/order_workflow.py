"""
OrderWorkflow -- order lifecycle operations.

Admin moves go through ``transition``.  Customer-facing operations check
ownership and the order's derived flags first:

    cancel_by_customer   pending | confirmed        -> cancelled
    request_refund       delivered (reason needed)  -> refund_requested
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from lifecycle_kernel.domain.dtos import Actor, EntitySnapshot, TimelineEntry
from lifecycle_kernel.domain.states import Domain, OrderState
from lifecycle_kernel.exceptions import EntityNotFoundError, WorkflowValidationError
from lifecycle_kernel.services.transition_engine import TransitionResult
from lifecycle_services.workflow_coordinator import WorkflowCoordinator

DEFAULT_CANCEL_REASON = "Cancelled by customer"

_CANCELLABLE = frozenset({OrderState.PENDING.value, OrderState.CONFIRMED.value})


class OrderWorkflow(WorkflowCoordinator):
    domain = Domain.ORDER

    def flags(self, state: str) -> dict[str, bool]:
        return {
            **super().flags(state),
            "can_cancel": state in _CANCELLABLE,
            "can_request_refund": state == OrderState.DELIVERED.value,
        }

    def create_order(
        self,
        reference: str,
        customer_id: str,
        actor: Actor | None = None,
        attributes: dict[str, Any] | None = None,
        notes: str | None = None,
    ) -> TransitionResult:
        """Place an order for ``customer_id`` in the pending state."""
        return self._create(
            reference,
            actor or Actor.user(customer_id),
            owner_id=str(customer_id),
            attributes=attributes,
            notes=notes or "Order placed",
        )

    def owned_by(self, order_id: UUID, customer_id: str) -> EntitySnapshot:
        """The order, if it belongs to ``customer_id``."""
        snapshot = self._selector.get_snapshot(order_id, self.domain)
        if snapshot is None or snapshot.owner_id != str(customer_id):
            raise EntityNotFoundError(str(order_id), self.domain.value)
        return snapshot

    def cancel_by_customer(
        self,
        order_id: UUID,
        customer_id: str,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        order = self.owned_by(order_id, customer_id)
        if not self.flags(order.current_state)["can_cancel"]:
            raise WorkflowValidationError(
                "status", "Order cannot be cancelled at this stage"
            )
        reason = (reason or "").strip() or DEFAULT_CANCEL_REASON
        return self.transition(
            order_id,
            OrderState.CANCELLED.value,
            Actor.user(customer_id),
            reason,
            metadata={"cancel_reason": reason},
            idempotency_key=idempotency_key,
        )

    def request_refund(
        self,
        order_id: UUID,
        customer_id: str,
        reason: str,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        if not reason or not reason.strip():
            raise WorkflowValidationError("reason", "Reason is required for refund request")
        order = self.owned_by(order_id, customer_id)
        if not self.flags(order.current_state)["can_request_refund"]:
            raise WorkflowValidationError(
                "status", "Refund can only be requested for delivered orders"
            )
        reason = reason.strip()
        return self.transition(
            order_id,
            OrderState.REFUND_REQUESTED.value,
            Actor.user(customer_id),
            f"Refund requested: {reason}",
            metadata={"refund_reason": reason},
            attributes={"refund_reason": reason},
            idempotency_key=idempotency_key,
        )

    def customer_timeline(self, order_id: UUID, customer_id: str) -> list[TimelineEntry]:
        """Status changes only; notes and creation stay internal."""
        self.owned_by(order_id, customer_id)
        return self._status_events(order_id)
