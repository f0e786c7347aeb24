"""
Clock -- Injectable time source.

Settlement events, outbox rows and fulfillment claims are stamped through a
Clock passed to each service, never through ``datetime.now()``, so a test
can pin the business day and step through it.

Kernel > Domain.  ``SystemClock`` is the only implementation that reads the
real time.
"""

from abc import ABC, abstractmethod
from datetime import UTC, date, datetime, timedelta, tzinfo


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self, tz: tzinfo = UTC) -> date:
        """Business day containing ``now()`` as seen from ``tz``."""
        return self.now().astimezone(tz).date()


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    ``now()`` keeps returning the same instant until ``advance`` or
    ``set_time`` is called.
    """

    def __init__(self, start: datetime | None = None):
        start = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start")
        self._current = start.astimezone(UTC)

    def now(self) -> datetime:
        return self._current

    def set_time(self, moment: datetime) -> None:
        if moment.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware time")
        self._current = moment.astimezone(UTC)

    def advance(self, by: timedelta | int = 1) -> datetime:
        """Move forward by ``by`` (seconds when an int) and return the new time."""
        if isinstance(by, int):
            by = timedelta(seconds=by)
        if by < timedelta(0):
            raise ValueError("DeterministicClock cannot move backwards")
        self._current += by
        return self._current
