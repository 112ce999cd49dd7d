"""
NUDGE Clock - Injectable Time Source

Everything that needs "now" asks a Clock, so ticks and date rollovers can be
driven deterministically in tests.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, tzinfo


class Clock(ABC):
    """Source of timezone-aware current time."""

    @property
    @abstractmethod
    def tz(self) -> tzinfo:
        pass

    @abstractmethod
    def now(self) -> datetime:
        pass

    def today(self) -> str:
        """Calendar date (YYYY-MM-DD) in the clock's timezone."""
        return self.now().astimezone(self.tz).date().isoformat()


class SystemClock(Clock):
    """Wall clock in a fixed timezone."""

    def __init__(self, tz: tzinfo):
        self._tz = tz

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        return datetime.now(self._tz)


class ManualClock(Clock):
    """
    Clock that only moves when told to.

    Example:
        >>> clock = ManualClock(datetime(2025, 8, 27, 8, 0, tzinfo=tz))
        >>> clock.advance(minutes=5)
    """

    def __init__(self, start: datetime):
        if start.tzinfo is None:
            raise ValueError("ManualClock needs a timezone-aware start time")
        self._tz = start.tzinfo
        self._now = start
        self._lock = threading.Lock()

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, when: datetime):
        if when.tzinfo is None:
            raise ValueError("ManualClock.set needs a timezone-aware datetime")
        with self._lock:
            self._now = when.astimezone(self._tz)

    def advance(self, **kwargs) -> datetime:
        """Move forward by timedelta(**kwargs) and return the new time."""
        with self._lock:
            self._now = self._now + timedelta(**kwargs)
            return self._now
