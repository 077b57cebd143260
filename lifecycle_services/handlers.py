"""
Post-commit outbound handlers.

Each handler consumes one committed lifecycle event (an ``OutboundMessage``)
and performs a side effect outside the transition's unit of work.  The
OutboundDispatcher runs every handler in its own session and commits it
when the handler returns; a raised exception rolls that session back and
marks the outbound row failed for retry.

Handlers return the ids of any outbound rows their own work produced so
the dispatcher can publish them in turn (a shipment delivery moves the
order to delivered, whose outbound row drives settlement).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from lifecycle_kernel.domain.clock import Clock, SystemClock
from lifecycle_kernel.domain.definitions import DEFAULT_REGISTRY
from lifecycle_kernel.domain.dtos import Actor
from lifecycle_kernel.domain.state_machine import StateMachineRegistry
from lifecycle_kernel.domain.states import Domain, EventType, OrderState, ShipmentState
from lifecycle_kernel.logging_config import get_logger
from lifecycle_kernel.models.outbound_event import OutboundEvent
from lifecycle_kernel.services.event_store import EventStore
from lifecycle_kernel.services.transition_engine import (
    TransitionEngine,
    TransitionResult,
    TransitionStatus,
)
from lifecycle_services.ports import BillingPort, NotificationPort

logger = get_logger("services.handlers")


@dataclass(frozen=True)
class OutboundMessage:
    """Immutable copy of an outbound row handed to handlers."""

    outbound_id: UUID
    source_event_id: UUID
    entity_id: UUID
    domain: Domain
    event_type: EventType
    previous_state: str | None
    new_state: str | None
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: OutboundEvent) -> OutboundMessage:
        return cls(
            outbound_id=row.id,
            source_event_id=row.source_event_id,
            entity_id=row.entity_id,
            domain=Domain(row.domain),
            event_type=EventType(row.event_type),
            previous_state=row.previous_state,
            new_state=row.new_state,
            payload=dict(row.payload or {}),
        )

    @property
    def parent_id(self) -> UUID | None:
        raw = self.payload.get("parent_id")
        return UUID(raw) if raw else None

    @property
    def notify_actor(self) -> bool:
        return bool(self.payload.get("notify_actor", True))


class OutboundHandler(ABC):
    """One post-commit side effect."""

    name: str = "handler"

    @abstractmethod
    def handle(self, session: Session, message: OutboundMessage) -> list[UUID]:
        """Perform the side effect. Returns follow-up outbound ids."""


class NotificationHandler(OutboundHandler):
    """Notifies the owner of every state change unless ``notify_actor`` is false."""

    name = "notification"

    def __init__(self, notifier: NotificationPort):
        self._notifier = notifier

    def handle(self, session: Session, message: OutboundMessage) -> list[UUID]:
        if not message.notify_actor:
            logger.debug(
                "notification_skipped",
                extra={"outbound_id": str(message.outbound_id)},
            )
            return []
        self._notifier.notify(
            message.entity_id,
            message.domain.value,
            message.previous_state,
            message.new_state,
        )
        return []


class DeliverySettlementHandler(OutboundHandler):
    """Completes payment and ensures an invoice when an order is delivered."""

    name = "delivery_settlement"

    def __init__(self, billing: BillingPort):
        self._billing = billing

    def handle(self, session: Session, message: OutboundMessage) -> list[UUID]:
        if message.domain is not Domain.ORDER:
            return []
        if message.event_type is not EventType.STATUS_CHANGE:
            return []
        if message.new_state != OrderState.DELIVERED.value:
            return []

        self._billing.mark_payment_completed(message.entity_id)
        self._billing.ensure_invoice(message.entity_id)
        logger.info(
            "delivery_settled",
            extra={"order_id": str(message.entity_id)},
        )
        return []


class ShipmentOrderSyncHandler(OutboundHandler):
    """
    Keeps an order in step with its shipment.

    Contract:
        - shipment ``created``             -> order ``shipped``
        - shipment status ``delivered``    -> order ``delivered``

    Guarantees:
        - Moves go through the TransitionEngine as the system actor with an
          idempotency key derived from the source event, so a redelivered
          message never applies twice.
        - A delivery that overtakes the shipment's ``created`` message
          ships the order first, keyed on the ``created`` event, so the late
          ``created`` message resolves as already applied.
        - Any other order that cannot legally make the move is logged and
          left alone; the message counts as handled.
    """

    name = "shipment_order_sync"

    def __init__(
        self,
        clock: Clock | None = None,
        registry: StateMachineRegistry | None = None,
    ):
        self._clock = clock or SystemClock()
        self._registry = registry or DEFAULT_REGISTRY

    def _target_state(self, message: OutboundMessage) -> OrderState | None:
        if message.event_type is EventType.CREATED:
            return OrderState.SHIPPED
        if (
            message.event_type is EventType.STATUS_CHANGE
            and message.new_state == ShipmentState.DELIVERED.value
        ):
            return OrderState.DELIVERED
        return None

    def handle(self, session: Session, message: OutboundMessage) -> list[UUID]:
        if message.domain is not Domain.SHIPMENT:
            return []
        target = self._target_state(message)
        order_id = message.parent_id
        if target is None or order_id is None:
            return []

        engine = TransitionEngine(
            session, clock=self._clock, registry=self._registry, auto_commit=False
        )
        follow_ups: list[UUID] = []
        result = self._move(engine, order_id, target, message, message.source_event_id)

        if (
            result.status is TransitionStatus.ILLEGAL_TRANSITION
            and target is OrderState.DELIVERED
            and result.from_state == OrderState.READY_FOR_SHIPPING.value
        ):
            created_id = self._created_event_id(session, message.entity_id)
            if created_id is not None:
                logger.info(
                    "shipment_order_sync_catch_up",
                    extra={
                        "shipment_id": str(message.entity_id),
                        "order_id": str(order_id),
                        "created_event_id": str(created_id),
                    },
                )
                shipped = self._move(engine, order_id, OrderState.SHIPPED, message, created_id)
                if shipped.status is TransitionStatus.APPLIED and shipped.outbound_id:
                    follow_ups.append(shipped.outbound_id)
                result = self._move(engine, order_id, target, message, message.source_event_id)

        if result.status is TransitionStatus.APPLIED:
            if result.outbound_id:
                follow_ups.append(result.outbound_id)
            return follow_ups
        if result.status is not TransitionStatus.ALREADY_APPLIED:
            logger.warning(
                "shipment_order_sync_skipped",
                extra={
                    "shipment_id": str(message.entity_id),
                    "order_id": str(order_id),
                    "status": result.status.value,
                    "from_state": result.from_state,
                    "to_state": target.value,
                },
            )
        return follow_ups

    def _move(
        self,
        engine: TransitionEngine,
        order_id: UUID,
        target: OrderState,
        message: OutboundMessage,
        source_event_id: UUID,
    ) -> TransitionResult:
        reference = message.payload.get("reference")
        notes = (
            f"Shipment {reference} created"
            if target is OrderState.SHIPPED
            else "Package delivered"
        )
        return engine.attempt_transition(
            order_id,
            Domain.ORDER,
            target,
            Actor.system("shipment-sync"),
            notes,
            metadata={"shipment_id": str(message.entity_id), "notify_actor": True},
            idempotency_key=f"shipment-sync:{source_event_id}",
        )

    def _created_event_id(self, session: Session, shipment_id: UUID) -> UUID | None:
        for event in EventStore(session, self._clock).list_by_entity(shipment_id):
            if event.event_type is EventType.CREATED:
                return event.event_id
        return None


def default_handlers(
    notifier: NotificationPort,
    billing: BillingPort,
    clock: Clock | None = None,
    registry: StateMachineRegistry | None = None,
) -> list[OutboundHandler]:
    return [
        ShipmentOrderSyncHandler(clock=clock, registry=registry),
        DeliverySettlementHandler(billing),
        NotificationHandler(notifier),
    ]
