"""
Clock abstraction for time-based pipeline state.

Throttle windows, delivery backoff, and detector lookback windows all read
the current time through a Clock so that tests can drive time explicitly.

Example:
    >>> clock = ManualClock(datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc))
    >>> clock.advance(minutes=15)
    >>> clock.now().isoformat()
    '2025-03-03T12:15:00+00:00'
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    """Source of the current, timezone-aware UTC time."""

    def now(self) -> datetime:
        """Return the current time."""
        ...


class SystemClock:
    """Clock backed by the system wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """
    Clock that only moves when told to.

    Attributes:
        _now: The instant returned by now().
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        if start is None:
            start = datetime(2025, 1, 1, tzinfo=timezone.utc)
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        """Jump to an absolute instant."""
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        self._now = value

    def advance(self, **kwargs: float) -> datetime:
        """
        Move the clock forward.

        Args:
            **kwargs: Any timedelta keyword (seconds, minutes, hours, days).

        Returns:
            datetime: The new current time.
        """
        self._now = self._now + timedelta(**kwargs)
        return self._now
