"""
OutboundDispatcher -- post-commit delivery of lifecycle events.

Contract:
    ``publish(outbound_id)`` schedules delivery of one committed outbound
    row and returns immediately.  ``deliver(outbound_id)`` runs every
    handler and records the outcome on the row.  ``retry_failed()``
    re-delivers failed (and stale pending) rows; the SweepScheduler calls it
    on every tick.

Architecture: lifecycle_services.  Runs outside the TransitionEngine's unit
    of work; nothing here can undo a committed transition.

Invariants enforced:
    - Each handler runs in its own session, committed on success and rolled
      back on failure.
    - A row is marked ``dispatched`` only when every handler succeeded;
      otherwise ``failed`` with ``attempts`` incremented, and ``dead`` once
      ``max_attempts`` is reached.
    - Delivery of a terminal row (dispatched or dead) is a no-op.

Failure modes:
    - Handler exceptions are logged (``outbound_handler_failed``) and
      recorded on the row; they never propagate to the publisher.
    - Bookkeeping failures (the row itself cannot be updated) propagate out
      of ``deliver``; the row stays retryable.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import timedelta
from typing import Callable, Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from lifecycle_kernel.domain.clock import Clock, SystemClock
from lifecycle_kernel.logging_config import LogContext, get_logger
from lifecycle_kernel.models.outbound_event import OutboundEvent, OutboundStatus
from lifecycle_kernel.services.outbound_service import OutboundService
from lifecycle_services.handlers import OutboundHandler, OutboundMessage

logger = get_logger("services.outbound_dispatcher")

DEFAULT_PENDING_GRACE = timedelta(minutes=5)


class OutboundDispatcher:
    """Fans committed lifecycle events out to the registered handlers.

    Non-goals:
        - NOT a message broker: delivery is at-least-once per handler, and a
          retried row re-runs every handler.  Handlers must tolerate repeats.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        handlers: Iterable[OutboundHandler],
        clock: Clock | None = None,
        max_attempts: int = 5,
        workers: int = 4,
        synchronous: bool = False,
        pending_grace: timedelta = DEFAULT_PENDING_GRACE,
    ):
        self._session_factory = session_factory
        self._handlers = list(handlers)
        self._clock = clock or SystemClock()
        self._max_attempts = max_attempts
        self._workers = workers
        self._synchronous = synchronous
        self._pending_grace = pending_grace
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()

    @property
    def handlers(self) -> tuple[OutboundHandler, ...]:
        return tuple(self._handlers)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def publish(self, outbound_id: UUID) -> Future | None:
        """Schedule delivery. Inline when synchronous, else on the thread pool."""
        if self._synchronous:
            self.deliver(outbound_id)
            return None
        return self._get_executor().submit(self._deliver_logged, outbound_id)

    def deliver(self, outbound_id: UUID) -> OutboundStatus | None:
        """
        Run every handler for one outbound row and record the outcome.

        Returns:
            The row's resulting status, or None if the row does not exist.
        """
        message = self._load(outbound_id)
        if message is None:
            return None
        if isinstance(message, OutboundStatus):
            return message

        with LogContext.bind(
            entity_id=str(message.entity_id),
            domain=message.domain.value,
            event_id=str(message.source_event_id),
        ):
            errors: list[str] = []
            follow_ups: list[UUID] = []
            for handler in self._handlers:
                session = self._session_factory()
                try:
                    follow_ups.extend(handler.handle(session, message) or [])
                    session.commit()
                except Exception as exc:
                    session.rollback()
                    errors.append(f"{handler.name}: {exc.__class__.__name__}: {exc}")
                    logger.warning(
                        "outbound_handler_failed",
                        extra={
                            "outbound_id": str(outbound_id),
                            "handler": handler.name,
                            "error": str(exc),
                            "error_code": getattr(exc, "code", None),
                        },
                        exc_info=True,
                    )
                finally:
                    session.close()

            status = self._record_outcome(outbound_id, errors)
            if status is OutboundStatus.DISPATCHED:
                logger.info(
                    "outbound_dispatched",
                    extra={
                        "outbound_id": str(outbound_id),
                        "event_type": message.event_type.value,
                        "new_state": message.new_state,
                        "handlers": len(self._handlers),
                        "follow_ups": len(follow_ups),
                    },
                )

        for follow_up in follow_ups:
            self.publish(follow_up)
        return status

    def retry_failed(self, limit: int = 100) -> int:
        """Re-deliver failed and stale pending rows inline. Returns rows attempted."""
        session = self._session_factory()
        try:
            ids = OutboundService(session, self._clock).list_retryable(
                limit=limit,
                pending_before=self._clock.now() - self._pending_grace,
            )
        finally:
            session.close()

        for outbound_id in ids:
            self.deliver(outbound_id)
        if ids:
            logger.info("outbound_retry_completed", extra={"attempted": len(ids)})
        return len(ids)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._workers,
                    thread_name_prefix="lifecycle-outbound",
                )
            return self._executor

    def _deliver_logged(self, outbound_id: UUID) -> OutboundStatus | None:
        try:
            return self.deliver(outbound_id)
        except Exception:
            logger.exception(
                "outbound_delivery_error", extra={"outbound_id": str(outbound_id)}
            )
            raise

    def _load(self, outbound_id: UUID) -> OutboundMessage | OutboundStatus | None:
        session = self._session_factory()
        try:
            row = session.get(OutboundEvent, outbound_id)
            if row is None:
                logger.warning(
                    "outbound_not_found", extra={"outbound_id": str(outbound_id)}
                )
                return None
            if row.is_terminal:
                return row.status_enum
            return OutboundMessage.from_row(row)
        finally:
            session.close()

    def _record_outcome(self, outbound_id: UUID, errors: list[str]) -> OutboundStatus:
        session = self._session_factory()
        try:
            service = OutboundService(session, self._clock)
            row = service.get(outbound_id)
            if row.is_terminal:
                return row.status_enum
            if errors:
                status = service.mark_failed(row, "; ".join(errors), self._max_attempts)
            else:
                service.mark_dispatched(row)
                status = OutboundStatus.DISPATCHED
            session.commit()
            return status
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
