"""
Injectable clocks for movement and cost-event timestamps.

Services take a Clock instead of calling ``datetime.now()`` so that ledger
timestamps are reproducible under test.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

EPOCH_FOR_TESTS = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock frozen at ``start`` until moved.

    With ``step`` set, every ``now()`` call returns the current time and then
    moves the clock forward by ``step``, so successive ledger requests get
    strictly increasing timestamps.
    """

    def __init__(self, start: datetime = EPOCH_FOR_TESTS, step: timedelta | None = None):
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start time")
        self._current = start
        self._step = step

    def now(self) -> datetime:
        current = self._current
        if self._step is not None:
            self._current += self._step
        return current

    def advance(self, delta: timedelta | float = 1) -> datetime:
        """Move forward by ``delta`` (a timedelta or seconds) and return the new time."""
        if not isinstance(delta, timedelta):
            delta = timedelta(seconds=delta)
        self._current += delta
        return self._current
