"""
Clock
=====

Single source of "now" for time-gated logic, so tests can move time
forward instead of sleeping through real delays.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


class SystemClock:
    """Wall-clock time, timezone-aware UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """
    Clock that only moves when told to.

    Args:
        start: Initial time (defaults to current UTC time)
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0.0, **kwargs) -> datetime:
        """Move forward by `seconds` (plus any timedelta kwargs)."""
        self._now += timedelta(seconds=seconds, **kwargs)
        return self._now

    def set(self, moment: datetime):
        self._now = moment


_default_clock = SystemClock()


def get_clock() -> SystemClock:
    """Return the process-wide system clock."""
    return _default_clock
