"""
Outbound collaborator ports.

Structural ``Protocol`` types for the systems a committed transition may
notify, plus two adapter families: ``Logging*`` adapters that emit a
structured log line per call, and ``Recording*`` adapters that keep calls
in memory for tests and dry runs.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Protocol, runtime_checkable
from uuid import UUID

from lifecycle_kernel.logging_config import get_logger

logger = get_logger("services.ports")


@runtime_checkable
class NotificationPort(Protocol):
    """Tells the entity's owner that its state changed."""

    def notify(
        self,
        entity_id: UUID,
        domain: str,
        previous_state: str | None,
        new_state: str | None,
    ) -> None: ...


@runtime_checkable
class BillingPort(Protocol):
    """Settles payment and invoicing for delivered orders.

    Both calls must be idempotent on the collaborator side.
    """

    def mark_payment_completed(self, order_id: UUID) -> None: ...

    def ensure_invoice(self, order_id: UUID) -> None: ...


class LoggingNotifier:
    def notify(self, entity_id, domain, previous_state, new_state) -> None:
        logger.info(
            "notification_sent",
            extra={
                "entity_id": str(entity_id),
                "domain": domain,
                "previous_state": previous_state,
                "new_state": new_state,
            },
        )


class LoggingBilling:
    def mark_payment_completed(self, order_id) -> None:
        logger.info("payment_marked_completed", extra={"order_id": str(order_id)})

    def ensure_invoice(self, order_id) -> None:
        logger.info("invoice_ensured", extra={"order_id": str(order_id)})


@dataclass(frozen=True)
class Notification:
    entity_id: UUID
    domain: str
    previous_state: str | None
    new_state: str | None


class RecordingNotifier:
    """In-memory notifier. Thread-safe."""

    def __init__(self):
        self._lock = threading.Lock()
        self.sent: list[Notification] = []

    def notify(self, entity_id, domain, previous_state, new_state) -> None:
        with self._lock:
            self.sent.append(Notification(entity_id, domain, previous_state, new_state))


class RecordingBilling:
    """In-memory billing collaborator with set semantics, so repeats are no-ops."""

    def __init__(self):
        self._lock = threading.Lock()
        self.paid: set[UUID] = set()
        self.invoiced: set[UUID] = set()
        self.calls: list[tuple[str, UUID]] = []

    def mark_payment_completed(self, order_id) -> None:
        with self._lock:
            self.calls.append(("mark_payment_completed", order_id))
            self.paid.add(order_id)

    def ensure_invoice(self, order_id) -> None:
        with self._lock:
            self.calls.append(("ensure_invoice", order_id))
            self.invoiced.add(order_id)
