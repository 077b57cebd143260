"""
Base class for the kernel's write-side services.

EventStore, SLATracker and OutboundService all work inside a transaction
someone else opened: they ``flush()`` and never commit or roll back.  That
is what lets the TransitionEngine write entity, event, SLA and outbound row
as one unit.
"""

from abc import ABC

from sqlalchemy import Select
from sqlalchemy.orm import Session

from lifecycle_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """Flush-only service bound to the caller's session and clock."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    def _scalar_fresh(self, stmt: Select):
        """One row or None, refreshed from the database over any cached instance."""
        return self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()
