# tests/test_event_service.py
from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import Session

from raidplan.clock import FixedClock
from raidplan.db.session import engine, SessionLocal
from raidplan.errors import ForbiddenError, StateTransitionRejected, ValidationError
from raidplan.models import (
    AvailabilityWindow,
    Base,
    Event,
    EventPlan,
    EventSignup,
    PollVote,
    RosterAssignment,
)
from raidplan.services.event_service import cancel_event, create_event, list_series
from raidplan.services.roster_service import signup_for_event

NOW = datetime(2026, 2, 20, 12, 0)


def setup_module(module):
    Base.metadata.create_all(bind=engine)


def _clean_db():
    db: Session = SessionLocal()
    try:
        db.query(PollVote).delete()
        db.query(EventPlan).delete()
        db.query(RosterAssignment).delete()
        db.query(EventSignup).delete()
        db.query(AvailabilityWindow).delete()
        db.query(Event).delete()
        db.commit()
    finally:
        db.close()


def test_create_single_event():
    _clean_db()
    db: Session = SessionLocal()
    try:
        series = create_event(
            db,
            creator_id=1,
            title="Karazhan",
            start_time=datetime(2026, 3, 1, 19, 0, tzinfo=timezone.utc),
            end_time=datetime(2026, 3, 1, 22, 0, tzinfo=timezone.utc),
            slot_config={"type": "mmo", "tank": 2, "healer": 3, "dps": 5},
        )

        assert len(series.events) == 1
        assert series.recurrence_group_id is None
        event = series.event
        assert event.start_time == datetime(2026, 3, 1, 19, 0)
        assert event.slot_config == {"type": "mmo", "tank": 2, "healer": 3, "dps": 5}
        assert event.reminder_15min is True
        assert event.auto_unbench is True
    finally:
        db.close()


def test_create_rejects_bad_input():
    _clean_db()
    db: Session = SessionLocal()
    try:
        with pytest.raises(ValidationError):
            create_event(
                db,
                creator_id=1,
                title="Backwards",
                start_time=datetime(2026, 3, 1, 22),
                end_time=datetime(2026, 3, 1, 19),
            )
        with pytest.raises(ValidationError):
            create_event(
                db,
                creator_id=1,
                title="Bad slots",
                start_time=datetime(2026, 3, 1, 19),
                end_time=datetime(2026, 3, 1, 22),
                slot_config={"type": "mmo", "tank": -2},
            )
        assert db.query(Event).count() == 0
    finally:
        db.close()


def test_weekly_series_shares_group_id_and_local_time():
    _clean_db()
    db: Session = SessionLocal()
    try:
        # 19:00 in New York on 2026-03-01 is 00:00 UTC the next day
        series = create_event(
            db,
            creator_id=1,
            title="Weekly raid",
            start_time=datetime(2026, 3, 2, 0, 0),
            end_time=datetime(2026, 3, 2, 3, 0),
            tz="America/New_York",
            recurrence={"frequency": "weekly", "until": "2026-03-22T04:00:00+00:00"},
        )

        assert series.recurrence_group_id is not None
        events = list_series(db, series.recurrence_group_id)
        assert [e.id for e in events] == [e.id for e in series.events]
        # DST starts on 2026-03-08, so the UTC hour moves from 0 to 23
        assert [e.start_time for e in events] == [
            datetime(2026, 3, 2, 0, 0),
            datetime(2026, 3, 8, 23, 0),
            datetime(2026, 3, 15, 23, 0),
        ]
        assert all(e.recurrence_rule["frequency"] == "weekly" for e in events)
    finally:
        db.close()


def test_cancel_event_frees_committed_windows():
    _clean_db()
    db: Session = SessionLocal()
    clock = FixedClock(NOW)
    try:
        event = create_event(
            db,
            creator_id=1,
            title="Raid",
            start_time=datetime(2026, 3, 1, 19),
            end_time=datetime(2026, 3, 1, 22),
        ).event
        signup_for_event(db, event_id=event.id, user_id=1, clock=clock)
        signup_for_event(db, event_id=event.id, user_id=2, clock=clock)

        with pytest.raises(ForbiddenError):
            cancel_event(db, event_id=event.id, user_id=2, clock=clock)

        result = cancel_event(db, event_id=event.id, user_id=1, clock=clock)
        assert result.freed_windows == 2
        assert result.event.cancelled_at == NOW

        statuses = {w.status for w in db.query(AvailabilityWindow).all()}
        assert statuses == {"freed"}

        with pytest.raises(StateTransitionRejected):
            cancel_event(db, event_id=event.id, user_id=1, clock=clock)
        with pytest.raises(StateTransitionRejected):
            signup_for_event(db, event_id=event.id, user_id=3, clock=clock)
    finally:
        db.close()
