"""
Injectable time source.

Lock transitions and generation timestamps read the time from a Clock
handed to the service, never from ``datetime.now()``.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

# Start of a billing month.
DEFAULT_TEST_TIME = datetime(2024, 4, 1, 9, 0, tzinfo=timezone.utc)


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"Clock times must be timezone-aware, got {value!r}")
    return value


class Clock(ABC):
    """Source of timezone-aware timestamps."""

    @abstractmethod
    def now(self) -> datetime: ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock for tests: stands still until moved.

    ``advance()`` moves it forward by any ``timedelta`` keyword arguments
    (seconds by default); ``set_time()`` jumps to an absolute instant.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._now = _require_aware(fixed_time or DEFAULT_TEST_TIME)

    def now(self) -> datetime:
        return self._now

    def set_time(self, value: datetime) -> None:
        self._now = _require_aware(value)

    def advance(self, seconds: float = 1, **delta: float) -> None:
        step = timedelta(seconds=seconds, **delta)
        if step < timedelta(0):
            raise ValueError("DeterministicClock cannot move backwards")
        self._now += step
