"""
Tests for ShipmentWorkflow and the order synchronisation it drives through
the outbound handlers.
"""

import pytest

from lifecycle_kernel.domain.states import ActorType, Domain
from lifecycle_kernel.exceptions import EntityNotFoundError, WorkflowValidationError
from lifecycle_kernel.models.outbound_event import OutboundEvent, OutboundStatus
from lifecycle_kernel.selectors.entity_selector import EntitySelector
from lifecycle_kernel.services.transition_engine import TransitionEngine
from lifecycle_services.shipment_workflow import ShipmentWorkflow, tracking_url

READY = ("confirmed", "processing", "ready_for_shipping")
IN_FLIGHT = ("picked_up", "in_transit", "out_for_delivery")


class _InterleavedEngine(TransitionEngine):
    """Engine that lets a competing request commit just before it locks the order."""

    competitor = None

    def _guard_parent(self, parent_id, domain, parent_check):
        competitor, self.competitor = self.competitor, None
        if competitor is not None:
            competitor()
        super()._guard_parent(parent_id, domain, parent_check)


@pytest.fixture
def ready_order(make_order):
    return make_order(*READY)


@pytest.fixture
def shipment(shipments, ready_order, admin):
    result = shipments.create_shipment(
        ready_order, "fedex", "SHP-1", admin, tracking_number="7777"
    )
    return result.entity_id


class TestTrackingUrl:
    def test_template_filled(self):
        assert tracking_url("ups", "1Z9") == "https://www.ups.com/track?tracknum=1Z9"

    def test_missing_number_or_template(self):
        assert tracking_url("ups", None) is None
        assert tracking_url("local", "123") is None
        assert tracking_url("pigeon", "123") is None

    def test_carrier_options(self):
        codes = [c["code"] for c in ShipmentWorkflow.carrier_options()]
        assert codes[:2] == ["fedex", "ups"]


class TestCreateShipment:
    def test_shipment_created_and_order_shipped(
        self, shipments, orders, shipment, ready_order, customer_id
    ):
        view = shipments.get(shipment)
        assert view.entity.current_state == "pending"
        assert view.entity.parent_id == ready_order
        assert view.entity.owner_id == customer_id
        assert view.entity.attributes["tracking_url"].endswith("7777")

        order = orders.get(ready_order)
        assert order.entity.current_state == "shipped"
        sync_event = orders.timeline(ready_order)[-1].event
        assert sync_event.actor_type is ActorType.SYSTEM
        assert sync_event.notes == "Shipment SHP-1 created"

    def test_order_must_be_ready(self, shipments, make_order, admin):
        order_id = make_order("confirmed")
        with pytest.raises(WorkflowValidationError, match="ready for shipping"):
            shipments.create_shipment(order_id, "ups", "SHP-2", admin)

    def test_unknown_order(self, shipments, admin):
        from uuid import uuid4

        with pytest.raises(EntityNotFoundError):
            shipments.create_shipment(uuid4(), "ups", "SHP-3", admin)

    def test_unknown_carrier(self, shipments, ready_order, admin):
        with pytest.raises(WorkflowValidationError) as exc_info:
            shipments.create_shipment(ready_order, "pigeon", "SHP-4", admin)
        assert exc_info.value.field == "carrier"

    def test_interleaved_creates_leave_one_shipment(
        self, session, session_factory, deterministic_clock, ready_order, admin, monkeypatch
    ):
        slow = ShipmentWorkflow(session, clock=deterministic_clock)
        engine = _InterleavedEngine(session, clock=deterministic_clock)
        monkeypatch.setattr(slow, "_engine", engine)

        other = session_factory()
        fast = ShipmentWorkflow(other, clock=deterministic_clock)
        engine.competitor = lambda: fast.create_shipment(ready_order, "ups", "SHP-FAST", admin)
        try:
            with pytest.raises(WorkflowValidationError, match="already exists"):
                slow.create_shipment(ready_order, "fedex", "SHP-SLOW", admin)
        finally:
            other.close()

        children = EntitySelector(session).list_children(ready_order, Domain.SHIPMENT)
        assert [child.reference for child in children] == ["SHP-FAST"]


class TestCarrierProgress:
    def test_location_and_description_recorded(self, shipments, shipment, admin):
        result = shipments.transition(shipment, "picked_up", admin, location="Memphis, TN")

        assert result.event.metadata["location"] == "Memphis, TN"
        assert result.event.metadata["description"] == "Status updated to Picked Up"
        assert result.event.notes == "Status updated to Picked Up"
        assert shipments.get(shipment).flags["is_in_flight"] is True

    def test_delivery_completes_order_and_settles(
        self, shipments, orders, shipment, ready_order, admin, billing, deterministic_clock
    ):
        for state in IN_FLIGHT:
            shipments.transition(shipment, state, admin).raise_for_status()
        assert billing.paid == set()

        shipments.transition(shipment, "delivered", admin).raise_for_status()

        view = shipments.get(shipment)
        assert view.flags["is_delivered"] is True
        assert view.entity.attributes["actual_delivery"] == deterministic_clock.now().isoformat()

        order = orders.get(ready_order)
        assert order.entity.current_state == "delivered"
        assert order.flags["can_request_refund"] is True
        assert orders.timeline(ready_order)[-1].event.notes == "Package delivered"
        assert billing.paid == {ready_order}
        assert billing.invoiced == {ready_order}

    def test_delay_and_recovery(self, shipments, shipment, admin):
        for state in ("picked_up", "in_transit", "delayed", "in_transit", "at_facility"):
            shipments.transition(shipment, state, admin).raise_for_status()
        assert shipments.snapshot(shipment).current_state == "at_facility"

    def test_update_tracking(self, shipments, shipment, admin):
        result = shipments.update_tracking(shipment, " 8888 ", admin)

        assert result.event.notes == "Tracking number updated: 8888"
        assert result.entity.attributes["tracking_number"] == "8888"
        assert result.entity.attributes["tracking_url"].endswith("8888")
        assert result.entity.current_state == "pending"

    def test_update_tracking_requires_number(self, shipments, shipment, admin):
        with pytest.raises(WorkflowValidationError):
            shipments.update_tracking(shipment, "", admin)


class TestOutOfOrderSync:
    """A delivery processed before the shipment's created message still settles the order."""

    def test_delivery_overtakes_created_message(
        self,
        session,
        session_factory,
        shipments,
        orders,
        ready_order,
        admin,
        billing,
        dispatcher,
        deterministic_clock,
        captured_logs,
    ):
        # Created without a dispatcher: its outbound row stays pending.
        offline = ShipmentWorkflow(session, clock=deterministic_clock, dispatcher=None)
        created = offline.create_shipment(ready_order, "ups", "SHP-LATE", admin)
        assert orders.snapshot(ready_order).current_state == "ready_for_shipping"

        for state in (*IN_FLIGHT, "delivered"):
            shipments.transition(created.entity_id, state, admin).raise_for_status()

        assert orders.snapshot(ready_order).current_state == "delivered"
        assert billing.paid == {ready_order}
        history = [entry.event.new_state for entry in orders.timeline(ready_order)]
        assert history[-2:] == ["shipped", "delivered"]
        assert any(r["message"] == "shipment_order_sync_catch_up" for r in captured_logs())

        deterministic_clock.advance(6 * 60)
        dispatcher.retry_failed()

        check = session_factory()
        try:
            row = check.get(OutboundEvent, created.outbound_id)
            assert row.status == OutboundStatus.DISPATCHED.value
        finally:
            check.close()
        history = [entry.event.new_state for entry in orders.timeline(ready_order)]
        assert history.count("shipped") == 1
        assert orders.snapshot(ready_order).current_state == "delivered"
