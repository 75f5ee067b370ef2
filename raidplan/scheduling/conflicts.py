# raidplan/scheduling/conflicts.py
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence

from raidplan.errors import ValidationError
from raidplan.scheduling.intervals import TimeWindow, duration, overlaps, within_max

DEFAULT_MAX_WINDOW_HOURS = 24


@dataclass(frozen=True)
class Conflict:
    conflicting_id: Any
    time_range: TimeWindow
    status: str
    game_id: Optional[int]

    def to_dict(self) -> dict:
        return {
            "conflicting_id": self.conflicting_id,
            "time_range": self.time_range.to_dict(),
            "status": self.status,
            "game_id": self.game_id,
        }


def validate_window(start, end, max_hours: float = DEFAULT_MAX_WINDOW_HOURS) -> TimeWindow:
    """
    Build a TimeWindow and check it against the availability duration cap.

    Raises ValidationError for end <= start or for a window longer than
    `max_hours`.
    """
    window = TimeWindow(start, end)
    if not within_max(window, max_hours):
        raise ValidationError(
            f"availability windows may not exceed {max_hours:g} hours",
            field="end_time",
            max_hours=max_hours,
            duration_hours=round(duration(window) / 3600, 2),
        )
    return window


def _window_of(row) -> TimeWindow:
    return TimeWindow(row.start_time, row.end_time)


def _status_value(status) -> str:
    return getattr(status, "value", status)


def find_conflicts(
    candidate: TimeWindow,
    existing: Iterable,
    *,
    exclude_id: Any = None,
    statuses: Optional[Sequence[str]] = None,
    exclude_game_id: Optional[int] = None,
) -> List[Conflict]:
    """
    Return one Conflict per existing window that overlaps `candidate`.

    `existing` items need `id`, `start_time`, `end_time`, `status` and
    `game_id` attributes (ORM rows or plain objects).

    - `exclude_id` drops the window being updated (compared by id).
    - `statuses`, when given, restricts the report to those statuses.
    - `exclude_game_id` drops windows scoped to that same game, so a
      game-specific window may overlap windows of the same game silently.

    Conflicts are reported in the order of `existing`.
    """
    allowed = {_status_value(s) for s in statuses} if statuses is not None else None

    conflicts: List[Conflict] = []
    for row in existing:
        if exclude_id is not None and row.id == exclude_id:
            continue
        status = _status_value(row.status)
        if allowed is not None and status not in allowed:
            continue
        if exclude_game_id is not None and row.game_id == exclude_game_id:
            continue

        window = _window_of(row)
        if overlaps(candidate, window):
            conflicts.append(
                Conflict(
                    conflicting_id=row.id,
                    time_range=window,
                    status=status,
                    game_id=row.game_id,
                )
            )
    return conflicts
