# raidplan/scheduling/heatmap.py
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from raidplan.errors import ValidationError
from raidplan.scheduling.intervals import AvailabilityStatus, TimeWindow, overlaps

NO_STATUS = "none"
DEFAULT_SLOT_MINUTES = 30

# Opt-in precedence for overlapping windows of one user. Not applied unless
# the caller passes it explicitly.
DEFAULT_STATUS_PRECEDENCE: Tuple[str, ...] = (
    AvailabilityStatus.COMMITTED.value,
    AvailabilityStatus.BLOCKED.value,
    AvailabilityStatus.AVAILABLE.value,
    AvailabilityStatus.FREED.value,
)


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime
    label: str


@dataclass
class UserRow:
    user_id: int
    statuses: List[str]


@dataclass
class HeatmapGrid:
    time_range: TimeWindow
    slot_minutes: int
    slots: List[TimeSlot]
    rows: List[UserRow]
    coverage: List[Dict[str, int]] = field(default_factory=list)

    def status_at(self, user_id: int, slot_index: int) -> str:
        for row in self.rows:
            if row.user_id == user_id:
                return row.statuses[slot_index]
        raise KeyError(user_id)

    def cells(self) -> Dict[Tuple[int, int], str]:
        """Flatten to {(user_id, slot_index): status}."""
        return {
            (row.user_id, i): status
            for row in self.rows
            for i, status in enumerate(row.statuses)
        }

    def available_counts(self) -> List[int]:
        return [c.get(AvailabilityStatus.AVAILABLE.value, 0) for c in self.coverage]


def _hour_label(dt: datetime) -> str:
    hour = dt.hour % 12 or 12
    suffix = "AM" if dt.hour < 12 else "PM"
    return f"{hour}:{dt.minute:02d} {suffix}"


def build_time_slots(
    time_range: TimeWindow,
    slot_minutes: int = DEFAULT_SLOT_MINUTES,
) -> List[TimeSlot]:
    """
    Slice `time_range` into fixed buckets.

    Slicing starts at the top of the hour at or before range.start and
    steps by `slot_minutes` until range.end; the last bucket is truncated
    to range.end. Only buckets starting on the hour carry a label.
    """
    if slot_minutes <= 0:
        raise ValidationError(
            "slot_minutes must be positive",
            field="slot_minutes",
            value=slot_minutes,
        )

    step = timedelta(minutes=slot_minutes)
    current = time_range.start.replace(minute=0, second=0, microsecond=0)
    slots: List[TimeSlot] = []

    while current < time_range.end:
        slot_end = min(current + step, time_range.end)
        slots.append(
            TimeSlot(
                start=current,
                end=slot_end,
                label=_hour_label(current) if current.minute == 0 else "",
            )
        )
        current = current + step

    return slots


def _ordered(windows: Sequence, precedence: Optional[Sequence[str]]) -> List:
    if precedence is None:
        return list(windows)
    rank = {status: i for i, status in enumerate(precedence)}
    # sorted() is stable, so list order still breaks ties inside one status
    return sorted(
        windows,
        key=lambda w: rank.get(getattr(w.status, "value", w.status), len(rank)),
    )


def slot_status(windows: Iterable, slot: TimeSlot) -> str:
    """Status of the first window overlapping the slot, or NO_STATUS."""
    slot_window = TimeWindow(slot.start, slot.end)
    for w in windows:
        if overlaps(slot_window, TimeWindow(w.start_time, w.end_time)):
            return getattr(w.status, "value", w.status)
    return NO_STATUS


def build_heatmap(
    users: Iterable[Tuple[int, Sequence]],
    time_range: TimeWindow,
    slot_minutes: int = DEFAULT_SLOT_MINUTES,
    precedence: Optional[Sequence[str]] = None,
) -> HeatmapGrid:
    """
    Build a (user x slot) status grid.

    `users` is an iterable of (user_id, windows); each window needs
    `start_time`, `end_time` and `status`. With `precedence=None` the first
    overlapping window in the user's own list order decides the cell;
    otherwise windows are evaluated in the given status order.
    """
    slots = build_time_slots(time_range, slot_minutes)
    rows: List[UserRow] = []

    for user_id, windows in users:
        ordered = _ordered(windows, precedence)
        rows.append(
            UserRow(
                user_id=user_id,
                statuses=[slot_status(ordered, slot) for slot in slots],
            )
        )

    coverage: List[Dict[str, int]] = []
    for i in range(len(slots)):
        counts: Dict[str, int] = {}
        for row in rows:
            counts[row.statuses[i]] = counts.get(row.statuses[i], 0) + 1
        coverage.append(counts)

    return HeatmapGrid(
        time_range=time_range,
        slot_minutes=slot_minutes,
        slots=slots,
        rows=rows,
        coverage=coverage,
    )
