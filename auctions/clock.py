"""Clocks injected into every time-dependent component."""

from datetime import datetime, timedelta, timezone
from typing import Optional

class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        """Move forward by ``seconds`` plus any timedelta keyword arguments."""
        self._now += timedelta(seconds=seconds, **kwargs)
        return self._now
