"""
Tests for ReturnWorkflow -- creation guards, approval, rejection and the
attribute stamps written alongside transitions.
"""

from uuid import uuid4

import pytest

from lifecycle_kernel.domain.states import Domain
from lifecycle_kernel.exceptions import EntityNotFoundError, WorkflowValidationError
from lifecycle_kernel.selectors.entity_selector import EntitySelector
from lifecycle_kernel.services.transition_engine import TransitionEngine, TransitionStatus
from lifecycle_services.return_workflow import RETURN_REASON_CODES, ReturnWorkflow

DELIVERED = ("confirmed", "processing", "ready_for_shipping", "shipped", "delivered")


class _InterleavedEngine(TransitionEngine):
    """Engine that lets a competing request commit just before it locks the order."""

    competitor = None

    def _guard_parent(self, parent_id, domain, parent_check):
        competitor, self.competitor = self.competitor, None
        if competitor is not None:
            competitor()
        super()._guard_parent(parent_id, domain, parent_check)


@pytest.fixture
def delivered_order(make_order):
    return make_order(*DELIVERED)


@pytest.fixture
def open_return(returns, delivered_order, customer_id):
    result = returns.create_return(
        delivered_order,
        customer_id,
        "defective",
        "refund",
        reference=f"RET-{uuid4().hex[:8]}",
        reason_text="Screen cracked",
        items=[{"sku": "TV-1", "quantity": 1}],
    )
    return result.entity_id


class TestCreateReturn:
    def test_return_is_child_of_order(self, returns, open_return, delivered_order, customer_id):
        view = returns.get(open_return)

        assert view.entity.domain is Domain.RETURN_REQUEST
        assert view.entity.current_state == "pending"
        assert view.entity.parent_id == delivered_order
        assert view.entity.owner_id == customer_id
        assert view.entity.attributes["reason_code"] == "defective"
        assert view.entity.attributes["items"] == [{"sku": "TV-1", "quantity": 1}]
        assert view.state_display == "Pending Review"
        assert view.flags == {
            "is_terminal": False,
            "can_approve": True,
            "can_reject": True,
            "is_active": True,
        }

        created = returns.timeline(open_return)[0].event
        assert created.notes == "Return request created: Product Defective/Damaged"

    def test_order_must_be_delivered(self, returns, make_order, customer_id):
        order_id = make_order("confirmed")
        with pytest.raises(WorkflowValidationError, match="delivered"):
            returns.create_return(order_id, customer_id, "defective", "refund", "RET-1")

    def test_order_must_belong_to_customer(self, returns, delivered_order):
        with pytest.raises(EntityNotFoundError):
            returns.create_return(delivered_order, "customer-other", "defective", "refund", "RET-2")

    def test_only_one_active_return(self, returns, open_return, delivered_order, customer_id):
        with pytest.raises(WorkflowValidationError, match="already exists"):
            returns.create_return(delivered_order, customer_id, "wrong_item", "exchange", "RET-3")

    def test_new_return_allowed_after_rejection(
        self, returns, open_return, delivered_order, customer_id, admin
    ):
        returns.reject(open_return, admin, "Outside return window")

        result = returns.create_return(
            delivered_order, customer_id, "size_issue", "exchange", "RET-4"
        )
        assert result.status is TransitionStatus.APPLIED

    def test_interleaved_requests_leave_one_active_return(
        self, session, session_factory, deterministic_clock, delivered_order, customer_id, monkeypatch
    ):
        slow = ReturnWorkflow(session, clock=deterministic_clock)
        engine = _InterleavedEngine(session, clock=deterministic_clock)
        monkeypatch.setattr(slow, "_engine", engine)

        other = session_factory()
        fast = ReturnWorkflow(other, clock=deterministic_clock)
        engine.competitor = lambda: fast.create_return(
            delivered_order, customer_id, "defective", "refund", "RET-FAST"
        )
        try:
            with pytest.raises(WorkflowValidationError, match="already exists"):
                slow.create_return(delivered_order, customer_id, "wrong_item", "exchange", "RET-SLOW")
        finally:
            other.close()

        children = EntitySelector(session).list_children(delivered_order, Domain.RETURN_REQUEST)
        assert [child.reference for child in children] == ["RET-FAST"]

    @pytest.mark.parametrize(
        "reason_code, action, field",
        [("broken", "refund", "reason_code"), ("defective", "store_credit", "requested_action")],
    )
    def test_unknown_codes_rejected(
        self, returns, delivered_order, customer_id, reason_code, action, field
    ):
        with pytest.raises(WorkflowValidationError) as exc_info:
            returns.create_return(delivered_order, customer_id, reason_code, action, "RET-5")
        assert exc_info.value.field == field

    def test_reason_options(self):
        options = ReturnWorkflow.reason_options()
        assert len(options) == len(RETURN_REASON_CODES)
        assert options[0] == {
            "code": "defective",
            "label": "Product Defective/Damaged",
            "category": "quality",
        }


class TestApproval:
    def test_approve_stamps_attributes(self, returns, open_return, admin, deterministic_clock):
        result = returns.approve(open_return, admin)

        assert result.entity.current_state == "approved"
        attrs = result.entity.attributes
        assert attrs["approved_by"] == "admin-1"
        assert attrs["approved_at"] == deterministic_clock.now().isoformat()
        assert attrs["admin_notes"] == "Return request approved"
        assert returns.get(open_return).flags["can_approve"] is False

    def test_approve_from_more_info_needed(self, returns, open_return, admin):
        returns.transition(open_return, "more_info_needed", admin, "Send photos").raise_for_status()
        result = returns.approve(open_return, admin, "Photos received")
        assert result.entity.current_state == "approved"

    def test_cannot_approve_twice(self, returns, open_return, admin):
        returns.approve(open_return, admin)
        with pytest.raises(WorkflowValidationError, match="cannot be approved"):
            returns.approve(open_return, admin)


class TestRejection:
    def test_reject_requires_notes(self, returns, open_return, admin):
        with pytest.raises(WorkflowValidationError, match="Rejection reason"):
            returns.reject(open_return, admin, " ")

    def test_reject_is_terminal(self, returns, open_return, admin):
        result = returns.reject(open_return, admin, "Item was used")

        assert result.entity.current_state == "rejected"
        view = returns.get(open_return)
        assert view.flags["is_terminal"] is True
        assert view.flags["is_active"] is False
        assert view.available_transitions == ()

    def test_reject_after_failed_inspection(self, returns, open_return, admin):
        returns.approve(open_return, admin)
        for state in ("awaiting_return", "received", "inspecting", "inspection_failed"):
            returns.transition(open_return, state, admin).raise_for_status()

        result = returns.reject(open_return, admin, "Water damage")
        assert result.entity.current_state == "rejected"


class TestFullReturn:
    def test_pickup_path_to_completion(self, returns, open_return, admin, deterministic_clock):
        returns.approve(open_return, admin)
        path = (
            "pickup_scheduled",
            "picked_up",
            "in_transit",
            "received",
            "inspecting",
            "inspection_passed",
            "refund_initiated",
            "completed",
        )
        for state in path:
            returns.transition(open_return, state, admin).raise_for_status()

        view = returns.get(open_return)
        assert view.entity.current_state == "completed"
        assert view.entity.attributes["completed_at"] == deterministic_clock.now().isoformat()
        assert view.sla.status.value == "completed"

    def test_illegal_skip(self, returns, open_return, admin):
        result = returns.transition(open_return, "completed", admin)
        assert result.status is TransitionStatus.ILLEGAL_TRANSITION
        assert [o.state for o in result.allowed] == ["approved", "rejected", "more_info_needed"]


class TestReturnListing:
    """Customer and staff listings with reason and action breakdowns."""

    def test_my_returns_and_stats(self, returns, make_order, customer_id, admin):
        first = make_order(*DELIVERED)
        second = make_order(*DELIVERED)
        other = make_order(*DELIVERED, owner="customer-other")
        returns.create_return(first, customer_id, "defective", "refund", "RET-L1")
        rejected = returns.create_return(second, customer_id, "defective", "replacement", "RET-L2")
        returns.reject(rejected.entity_id, admin, "Outside return window")
        returns.create_return(other, "customer-other", "size_issue", "exchange", "RET-L3")

        mine = returns.list_for_owner(customer_id, order_by="reference")
        assert [item.reference for item in mine.items] == ["RET-L1", "RET-L2"]

        stats = returns.stats()
        assert stats["total"] == 3
        assert stats["by_state"]["pending"] == 2
        assert stats["by_state"]["rejected"] == 1
        assert stats["by_reason"] == {"defective": 2, "size_issue": 1}
        assert stats["by_action"] == {"exchange": 1, "refund": 1, "replacement": 1}

        assert returns.stats(customer_id)["by_reason"] == {"defective": 2}

    def test_filter_by_order(self, returns, open_return, delivered_order):
        page = returns.list_entities(parent_id=delivered_order)
        assert [item.entity_id for item in page.items] == [open_return]
