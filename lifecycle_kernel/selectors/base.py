"""
Base class for read-side selectors.

Selectors never add, delete, flush or commit; the caller owns the session.
They return frozen DTOs from ``domain.dtos``, never ORM instances.  Reads
use ``populate_existing`` because sessions are created with
``expire_on_commit=False`` and a row may have changed in another session
since it was first loaded.
"""

from abc import ABC
from datetime import timedelta
from typing import Generic, TypeVar

from sqlalchemy import Select
from sqlalchemy.orm import Session

from lifecycle_kernel.db.base import Base
from lifecycle_kernel.domain.clock import Clock, SystemClock
from lifecycle_kernel.domain.definitions import DEFAULT_REGISTRY
from lifecycle_kernel.domain.sla import DEFAULT_AT_RISK_WINDOW
from lifecycle_kernel.domain.state_machine import StateMachineRegistry

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        registry: StateMachineRegistry | None = None,
        at_risk_window: timedelta = DEFAULT_AT_RISK_WINDOW,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._registry = registry or DEFAULT_REGISTRY
        self._at_risk_window = at_risk_window

    def _one(self, stmt: Select) -> ModelType | None:
        return self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _all(self, stmt: Select) -> list[ModelType]:
        return list(
            self.session.execute(
                stmt.execution_options(populate_existing=True)
            ).scalars()
        )
