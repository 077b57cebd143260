"""
ReturnWorkflow -- return request lifecycle operations.

A return belongs to a delivered order of the same customer; at most one
non-terminal return may exist per order.  Approval, rejection and
completion stamp their timestamps into the entity's attributes in the same
unit of work as the transition.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from lifecycle_kernel.domain.dtos import Actor, EntitySnapshot
from lifecycle_kernel.domain.states import Domain, OrderState, ReturnState
from lifecycle_kernel.exceptions import EntityNotFoundError, WorkflowValidationError
from lifecycle_kernel.services.transition_engine import TransitionResult
from lifecycle_services.workflow_coordinator import WorkflowCoordinator

RETURN_REASON_CODES: dict[str, tuple[str, str]] = {
    "defective": ("Product Defective/Damaged", "quality"),
    "not_as_described": ("Not as Described", "quality"),
    "wrong_item": ("Wrong Item Received", "fulfillment"),
    "missing_parts": ("Missing Parts/Accessories", "quality"),
    "quality_issue": ("Quality Not Satisfactory", "quality"),
    "size_issue": ("Size/Fit Issue", "preference"),
    "changed_mind": ("Changed Mind", "preference"),
    "found_better_price": ("Found Better Price", "preference"),
    "late_delivery": ("Delivered Too Late", "fulfillment"),
    "other": ("Other", "other"),
}

REQUESTED_ACTIONS: dict[str, str] = {
    "refund": "Full Refund",
    "replacement": "Replacement",
    "exchange": "Exchange for Different Item",
    "repair": "Repair/Fix",
}

_APPROVABLE = frozenset({ReturnState.PENDING.value, ReturnState.MORE_INFO_NEEDED.value})
_REJECTABLE = _APPROVABLE | {ReturnState.INSPECTION_FAILED.value}


class ReturnWorkflow(WorkflowCoordinator):
    domain = Domain.RETURN_REQUEST

    def flags(self, state: str) -> dict[str, bool]:
        is_terminal = self.definition.is_terminal(state)
        return {
            "is_terminal": is_terminal,
            "can_approve": state in _APPROVABLE,
            "can_reject": state in _REJECTABLE,
            "is_active": not is_terminal,
        }

    @staticmethod
    def reason_options() -> list[dict[str, str]]:
        return [
            {"code": code, "label": label, "category": category}
            for code, (label, category) in RETURN_REASON_CODES.items()
        ]

    def stats(self, owner_id: str | None = None) -> dict[str, Any]:
        """State counts plus breakdowns by reason code and requested action."""
        return {
            **super().stats(owner_id),
            "by_reason": self._selector.attribute_counts(self.domain, "reason_code", owner_id),
            "by_action": self._selector.attribute_counts(
                self.domain, "requested_action", owner_id
            ),
        }

    def create_return(
        self,
        order_id: UUID,
        customer_id: str,
        reason_code: str,
        requested_action: str,
        reference: str,
        reason_text: str | None = None,
        items: list[Any] | None = None,
        pickup_address: str | None = None,
    ) -> TransitionResult:
        """
        Open a return request against a delivered order.

        The order checks run inside the create unit with the order row
        locked, so two concurrent requests cannot both pass the
        one-active-return rule.

        Raises:
            EntityNotFoundError: the order does not exist or is not the customer's.
            WorkflowValidationError: order not delivered, an active return
                exists, or the reason code / action is unknown.
        """
        if reason_code not in RETURN_REASON_CODES:
            raise WorkflowValidationError("reason_code", "Invalid reason code")
        if requested_action not in REQUESTED_ACTIONS:
            raise WorkflowValidationError("requested_action", "Invalid requested action")

        def check_order(
            order: EntitySnapshot | None, existing: list[EntitySnapshot]
        ) -> None:
            if (
                order is None
                or order.domain is not Domain.ORDER
                or order.owner_id != str(customer_id)
            ):
                raise EntityNotFoundError(str(order_id), Domain.ORDER.value)
            if order.current_state != OrderState.DELIVERED.value:
                raise WorkflowValidationError(
                    "order", "Returns can only be requested for delivered orders"
                )
            if any(not self.definition.is_terminal(r.current_state) for r in existing):
                raise WorkflowValidationError(
                    "order", "An active return request already exists for this order"
                )

        label = RETURN_REASON_CODES[reason_code][0]
        return self._create(
            reference,
            Actor.user(customer_id),
            parent_id=order_id,
            owner_id=str(customer_id),
            attributes={
                "reason_code": reason_code,
                "reason_text": reason_text,
                "requested_action": requested_action,
                "items": list(items or []),
                "pickup_address": pickup_address,
            },
            notes=f"Return request created: {label}",
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
    ) -> TransitionResult:
        stamps = dict(attributes or {})
        if requested_state == ReturnState.APPROVED.value:
            stamps.setdefault("approved_at", self._now_iso())
            stamps.setdefault("approved_by", actor.actor_id)
        elif requested_state == ReturnState.COMPLETED.value:
            stamps.setdefault("completed_at", self._now_iso())
        if notes:
            stamps.setdefault("admin_notes", notes)
        return super().transition(
            entity_id,
            requested_state,
            actor,
            notes,
            notify_actor=notify_actor,
            idempotency_key=idempotency_key,
            metadata=metadata,
            attributes=stamps,
        )

    def approve(
        self, return_id: UUID, actor: Actor, notes: str | None = None
    ) -> TransitionResult:
        current = self.snapshot(return_id).current_state
        if current not in _APPROVABLE:
            raise WorkflowValidationError(
                "status", "Return request cannot be approved in current status"
            )
        return self.transition(
            return_id, ReturnState.APPROVED.value, actor, notes or "Return request approved"
        )

    def reject(self, return_id: UUID, actor: Actor, notes: str) -> TransitionResult:
        if not notes or not notes.strip():
            raise WorkflowValidationError("notes", "Rejection reason is required")
        current = self.snapshot(return_id).current_state
        if current not in _REJECTABLE:
            raise WorkflowValidationError(
                "status", "Return request cannot be rejected in current status"
            )
        return self.transition(return_id, ReturnState.REJECTED.value, actor, notes.strip())
