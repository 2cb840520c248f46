"""Time source used by the dispatch engine, swappable in tests."""

from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

from django.utils import timezone


@runtime_checkable
class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock, timezone-aware (UTC when USE_TZ is on)."""

    def now(self) -> datetime:
        return timezone.now()


class FixedClock:
    """
    Manually driven clock for deterministic round/timeout tests.

    Usage:
        clock = FixedClock(start)
        clock.advance(seconds=31)
    """

    def __init__(self, start: datetime):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, moment: datetime) -> None:
        self._now = moment

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self._now = self._now + timedelta(seconds=seconds, **kwargs)
        return self._now
