# checkout/clock.py
"""Wall-clock access, injectable so expiry can be tested at exact boundaries."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock:
    """UTC wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        """Advance by timedelta keyword arguments (seconds=, minutes=, ...)."""
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when
