"""
Clock -- injectable source of the current time.

Services never call ``datetime.now()``; they receive a Clock.  Request
creation, step responses, completion and the expiry sweep all stamp time
from it, so a test can replay an approval chain to the second.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta


class Clock(ABC):
    """``now()`` always returns a timezone-aware UTC datetime."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Test clock that only moves when told to.

    ``now()`` is stable across calls until ``advance``, ``advance_hours``,
    ``tick`` or ``set_time`` moves it.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or datetime(2024, 1, 1, 8, 0, 0, tzinfo=UTC)

    def now(self) -> datetime:
        return self._current

    def set_time(self, moment: datetime) -> None:
        self._current = moment

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def advance_hours(self, hours: int) -> None:
        self.advance(hours * 3600)

    def tick(self) -> datetime:
        """Move one second forward and return the new time."""
        self.advance(1)
        return self._current
