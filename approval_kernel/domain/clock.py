"""
Clock -- injectable time source.

Responsibility:
    Deadlines, decision timestamps and audit timestamps are all taken from
    an injected ``Clock`` so that escalation scenarios can be driven in
    tests by advancing time rather than sleeping.

Architecture position:
    Kernel > Domain -- zero I/O except ``SystemClock``, the one sanctioned
    boundary for wall-clock time.

Failure modes:
    - ``DeterministicClock.advance`` rejects negative steps; time in the
      engine never moves backwards.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        The execution engine, audit log and collaborators receive a Clock
        via constructor injection and never call ``datetime.now()``.

    Guarantees:
        ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...


class SystemClock(Clock):
    """Production clock returning the actual system time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        ``now()`` returns the same value on repeated calls until
        ``advance()`` or ``set_time()`` is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(
            2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc
        )
        self._advance_seconds = 0

    def now(self) -> datetime:
        return self._fixed_time + timedelta(seconds=self._advance_seconds)

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._fixed_time = time
        self._advance_seconds = 0

    def advance(self, seconds: int = 1) -> datetime:
        """Advance the clock by ``seconds`` and return the new time."""
        if seconds < 0:
            raise ValueError("DeterministicClock cannot move backwards")
        self._advance_seconds += seconds
        return self.now()
