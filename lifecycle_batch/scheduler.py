"""
SweepScheduler -- in-process polling loop for SLA breach sweeps.

Each tick opens a session from the injected factory, flags every overdue SLA
record via ``SLATracker.sweep_breaches`` and commits, then asks the
OutboundDispatcher to re-deliver failed outbound events.  A failing tick is
rolled back and logged; the loop keeps going.

Running more than one scheduler against the same database is safe (the sweep
is a single conditional UPDATE) but redundant.
"""

from __future__ import annotations

import threading
from typing import Callable

from sqlalchemy.orm import Session

from lifecycle_kernel.domain.clock import Clock, SystemClock
from lifecycle_kernel.domain.definitions import DEFAULT_REGISTRY
from lifecycle_kernel.domain.state_machine import StateMachineRegistry
from lifecycle_kernel.logging_config import get_logger
from lifecycle_kernel.services.sla_tracker import SLATracker
from lifecycle_services.outbound_dispatcher import OutboundDispatcher

logger = get_logger("batch.scheduler")


class SweepScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        registry: StateMachineRegistry | None = None,
        dispatcher: OutboundDispatcher | None = None,
        tick_interval_seconds: float = 300,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._registry = registry or DEFAULT_REGISTRY
        self._dispatcher = dispatcher
        self._interval = tick_interval_seconds
        self._stopping = threading.Event()
        self._worker: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def tick(self) -> int:
        """Sweep once and retry failed outbound rows. Returns newly breached count."""
        breached = self._sweep()
        if self._dispatcher is not None:
            try:
                self._dispatcher.retry_failed()
            except Exception:
                logger.exception("scheduler_outbound_retry_failed")
        return breached

    def _sweep(self) -> int:
        session = self._session_factory()
        try:
            count = SLATracker(session, self._clock, self._registry).sweep_breaches(
                self._clock.now()
            )
            session.commit()
            return count
        except Exception:
            session.rollback()
            logger.exception("scheduler_tick_failed")
            return 0
        finally:
            session.close()

    def start(self) -> None:
        """Run ``tick`` every interval on a daemon thread. No-op when already running."""
        if self.is_running:
            return
        self._stopping.clear()
        self._worker = threading.Thread(
            target=self._loop, name="lifecycle-sweep-scheduler", daemon=True
        )
        self._worker.start()
        logger.info("scheduler_started", extra={"tick_interval": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal the loop and join it; a tick already running finishes first."""
        self._stopping.set()
        if self.is_running:
            self._worker.join(timeout=timeout)
        logger.info("scheduler_stopped")

    def _loop(self) -> None:
        while not self._stopping.is_set():
            self.tick()
            self._stopping.wait(self._interval)
