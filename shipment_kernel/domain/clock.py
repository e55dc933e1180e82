"""
Injectable time source.

Services stamp requests, status events, offers, assignments and audit
entries with ``clock.now()`` and never read the wall clock themselves, so a
test can pin every timestamp the engine writes.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

# Start of the deterministic timeline used by the test suite.
EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    ``now()`` keeps returning the same instant until ``advance()`` is called,
    which makes "created before" and "since/until" checks exact.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or EPOCH

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> datetime:
        self._current = self._current + timedelta(seconds=seconds)
        return self._current
