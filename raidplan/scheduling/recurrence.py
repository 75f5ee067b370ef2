# raidplan/scheduling/recurrence.py
"""
Recurrence expansion for repeating events.

Instances are anchored to local civil time in the event's timezone: a
weekly 7 PM raid stays at 7 PM local on both sides of a DST change, even
though its UTC offset moves.
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from raidplan.errors import ValidationError

MAX_RECURRENCE_INSTANCES = 52


class Frequency(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class RecurrenceRule:
    frequency: Frequency
    until: datetime

    @classmethod
    def from_dict(cls, raw: dict) -> "RecurrenceRule":
        try:
            frequency = Frequency(raw.get("frequency"))
        except ValueError:
            raise ValidationError(
                "recurrence frequency must be weekly, biweekly or monthly",
                field="recurrence.frequency",
                value=raw.get("frequency"),
            )
        until = raw.get("until")
        if isinstance(until, str):
            try:
                until = datetime.fromisoformat(until)
            except ValueError:
                until = None
        if not isinstance(until, datetime):
            raise ValidationError(
                "recurrence until must be an ISO-8601 datetime",
                field="recurrence.until",
                value=raw.get("until"),
            )
        return cls(frequency=frequency, until=until)

    def to_dict(self) -> dict:
        return {"frequency": self.frequency.value, "until": self.until.isoformat()}


@dataclass(frozen=True)
class Occurrence:
    index: int
    start: datetime
    end: datetime


def resolve_zone(tz: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"unknown timezone '{tz}'", field="timezone", value=tz)


def _to_local(dt: datetime, zone: ZoneInfo) -> datetime:
    """Naive values are local wall-clock time; aware values are converted."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=zone)
    return dt.astimezone(zone)


def _add_months(d: date, months: int, anchor_day: int) -> date:
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(anchor_day, last_day))


def _nth_date(first: date, frequency: Frequency, n: int) -> date:
    if frequency == Frequency.WEEKLY:
        return first + timedelta(days=7 * n)
    if frequency == Frequency.BIWEEKLY:
        return first + timedelta(days=14 * n)
    # always computed from the original day so clamping never drifts
    return _add_months(first, n, first.day)


def expand_recurrence(
    start: datetime,
    end: datetime,
    rule: RecurrenceRule,
    tz: str = "UTC",
    max_instances: int = MAX_RECURRENCE_INSTANCES,
) -> List[Occurrence]:
    """
    Expand an event into its ordered series, the original first.

    Each instance keeps the original local time-of-day and duration; only
    the date advances. Generation stops before the first instance whose
    start is at or after `rule.until`, and never exceeds `max_instances`.
    Returned datetimes are aware, in `tz`.
    """
    zone = resolve_zone(tz)
    local_start = _to_local(start, zone)
    # same-zone aware arithmetic works on wall time, so compare in UTC
    utc_start = local_start.astimezone(timezone.utc)
    utc_end = _to_local(end, zone).astimezone(timezone.utc)
    utc_until = _to_local(rule.until, zone).astimezone(timezone.utc)

    if utc_end <= utc_start:
        raise ValidationError("end_time must be after start_time", field="end_time")
    if utc_until <= utc_start:
        raise ValidationError(
            "recurrence until must be after the event start",
            field="recurrence.until",
            until=rule.until.isoformat(),
            start=start.isoformat(),
        )

    length = utc_end - utc_start
    wall_time = local_start.time()
    first_day = local_start.date()

    occurrences: List[Occurrence] = []
    n = 0
    while len(occurrences) < max_instances:
        day = _nth_date(first_day, rule.frequency, n)
        # rebuilt from the wall clock so the zone picks that day's offset
        instance_start = datetime.combine(day, wall_time, tzinfo=zone)
        instance_utc = instance_start.astimezone(timezone.utc)
        if instance_utc >= utc_until:
            break
        occurrences.append(
            Occurrence(
                index=n,
                start=instance_start,
                end=(instance_utc + length).astimezone(zone),
            )
        )
        n += 1

    return occurrences
