# raidplan/scheduling/intervals.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from raidplan.errors import ValidationError


class AvailabilityStatus(str, Enum):
    AVAILABLE = "available"
    COMMITTED = "committed"
    BLOCKED = "blocked"
    FREED = "freed"


# Statuses a user may author directly; the others come from event workflows.
USER_AUTHORED_STATUSES = (AvailabilityStatus.AVAILABLE, AvailabilityStatus.BLOCKED)


def normalize_utc(dt: datetime) -> datetime:
    """
    Convert an aware datetime to naive UTC (the storage representation).
    Naive datetimes are assumed to already be UTC and pass through.
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValidationError(
                "end_time must be after start_time",
                field="end_time",
                start=self.start.isoformat(),
                end=self.end.isoformat(),
            )

    @classmethod
    def utc(cls, start: datetime, end: datetime) -> "TimeWindow":
        return cls(normalize_utc(start), normalize_utc(end))

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def overlaps(a: TimeWindow, b: TimeWindow) -> bool:
    # half-open: touching endpoints do not overlap
    return a.start < b.end and b.start < a.end


def duration(w: TimeWindow) -> float:
    """Length of the window in seconds."""
    return (w.end - w.start).total_seconds()


def within_max(w: TimeWindow, max_hours: float) -> bool:
    return duration(w) <= max_hours * 3600


def clip(w: TimeWindow, bounds: TimeWindow) -> Optional[TimeWindow]:
    start = max(w.start, bounds.start)
    end = min(w.end, bounds.end)
    if end <= start:
        return None
    return TimeWindow(start, end)
