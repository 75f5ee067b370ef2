# raidplan/clock.py
from datetime import datetime, timezone


class Clock:
    """Source of "now" for services; always naive UTC."""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock(Clock):
    """
    Deterministic clock for tests and simulations.
    """

    def __init__(self, now: datetime):
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now


def get_clock() -> Clock:
    """
    FastAPI dependency; tests override it with a FixedClock.
    """
    return SystemClock()
