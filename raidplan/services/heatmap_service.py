# raidplan/services/heatmap_service.py
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from raidplan.config import Settings, get_settings
from raidplan.models.event_signup import EventSignup
from raidplan.scheduling.heatmap import HeatmapGrid, build_heatmap
from raidplan.scheduling.intervals import TimeWindow, normalize_utc
from raidplan.services.availability_service import find_availability_for_users
from raidplan.services.event_service import get_event


def get_roster_heatmap(
    db: Session,
    event_id: int,
    range_start: Optional[datetime] = None,
    range_end: Optional[datetime] = None,
    slot_minutes: Optional[int] = None,
    precedence: Optional[Sequence[str]] = None,
    settings: Optional[Settings] = None,
) -> HeatmapGrid:
    """
    Availability grid for everyone signed up to an event.

    Rows follow signup order; the range defaults to the event's own span.
    """
    settings = settings or get_settings()
    event = get_event(db, event_id)

    time_range = TimeWindow(
        normalize_utc(range_start) if range_start is not None else event.start_time,
        normalize_utc(range_end) if range_end is not None else event.end_time,
    )

    signups = (
        db.query(EventSignup)
        .filter(EventSignup.event_id == event_id)
        .order_by(EventSignup.signed_up_at.asc(), EventSignup.id.asc())
        .all()
    )
    user_ids = [s.user_id for s in signups]
    windows = find_availability_for_users(db, user_ids, time_range.start, time_range.end)

    return build_heatmap(
        [(uid, windows[uid]) for uid in user_ids],
        time_range,
        slot_minutes or settings.HEATMAP_SLOT_MINUTES,
        precedence=precedence,
    )
