# tests/test_intervals.py
from datetime import datetime, timedelta, timezone

import pytest

from raidplan.errors import ValidationError
from raidplan.scheduling.intervals import (
    TimeWindow,
    clip,
    duration,
    normalize_utc,
    overlaps,
    within_max,
)


def _w(start_hour: int, end_hour: int) -> TimeWindow:
    base = datetime(2026, 3, 1)
    return TimeWindow(base + timedelta(hours=start_hour), base + timedelta(hours=end_hour))


def test_touching_windows_do_not_overlap():
    a = _w(10, 12)
    b = _w(12, 14)
    assert not overlaps(a, b)
    assert not overlaps(b, a)


def test_overlapping_and_nested_windows():
    assert overlaps(_w(10, 12), _w(11, 13))
    assert overlaps(_w(10, 20), _w(12, 13))
    assert overlaps(_w(12, 13), _w(10, 20))


def test_end_must_be_after_start():
    start = datetime(2026, 3, 1, 10)
    with pytest.raises(ValidationError) as exc:
        TimeWindow(start, start)
    assert exc.value.context["field"] == "end_time"

    with pytest.raises(ValueError):
        TimeWindow(start, start - timedelta(minutes=1))


def test_duration_and_within_max():
    assert duration(_w(0, 2)) == 7200
    assert within_max(_w(0, 24), 24)

    long_window = TimeWindow(datetime(2026, 3, 1), datetime(2026, 3, 2, 0, 0, 1))
    assert not within_max(long_window, 24)


def test_normalize_utc_converts_aware_values():
    aware = datetime(2026, 3, 1, 19, 0, tzinfo=timezone(timedelta(hours=-5)))
    assert normalize_utc(aware) == datetime(2026, 3, 2, 0, 0)

    naive = datetime(2026, 3, 1, 19, 0)
    assert normalize_utc(naive) is naive


def test_clip_to_bounds():
    assert clip(_w(8, 12), _w(10, 20)) == _w(10, 12)
    assert clip(_w(1, 2), _w(10, 20)) is None
