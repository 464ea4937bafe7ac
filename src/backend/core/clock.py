"""
Clock abstraction.

Deadline checks and archive expiry never read the wall clock directly; they
take ``now`` from an injected clock so tests can pin time.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Source of the current time (always timezone-aware UTC)."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """A clock that only moves when told to."""

    def __init__(self, current: datetime | None = None):
        self.current = current or datetime.now(timezone.utc)
        if self.current.tzinfo is None:
            self.current = self.current.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        """Move the clock forward by ``delta`` or by timedelta keyword arguments."""
        self.current = self.current + (delta or timedelta(**kwargs))
        return self.current

    def set(self, current: datetime) -> None:
        self.current = current
