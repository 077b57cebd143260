"""
Injectable time source.

Services never call ``datetime.now()`` themselves: every event timestamp,
SLA deadline and ``breached_at`` comes from the Clock handed to them, which
lets tests move time forward past a deadline and sweep.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of the current time. ``now()`` is always timezone-aware UTC."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Starts at ``start`` (default 2024-01-01 12:00 UTC) and returns the same
    instant until ``advance``, ``advance_hours`` or ``set_time`` is called.
    """

    def __init__(self, start: datetime | None = None):
        self._current = (start or DEFAULT_START).astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def set_time(self, moment: datetime) -> None:
        self._current = moment.astimezone(timezone.utc)

    def advance(self, seconds: float = 1) -> datetime:
        self._current += timedelta(seconds=seconds)
        return self._current

    def advance_hours(self, hours: float) -> datetime:
        return self.advance(hours * 3600)
