"""
Clock -- injectable time source for the approval kernel.

Services stamp ``created_at``, ``decided_at`` and ``resolved_at`` from a
Clock handed to them, and urgency ages are measured against a ``now``
taken from the same Clock.  Engines never read time themselves.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

EPOCH_FOR_TESTS = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Guarantees:
        - ``now()`` returns the same instant on repeated calls until
          ``advance()`` is called.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or EPOCH_FOR_TESTS

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> datetime:
        """Move forward by ``seconds`` and return the new instant."""
        self._current += timedelta(seconds=seconds)
        return self._current
