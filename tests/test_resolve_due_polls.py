# tests/test_resolve_due_polls.py
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from raidplan.clock import FixedClock
from raidplan.db.session import engine, SessionLocal
from raidplan.models import (
    AvailabilityWindow,
    Base,
    Event,
    EventPlan,
    EventSignup,
    PollVote,
    RosterAssignment,
)
from raidplan.services.event_plan_service import create_plan
from scripts.resolve_due_polls import run_once

NOW = datetime(2026, 3, 1, 12, 0)


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


def test_run_once_closes_due_polls(capsys):
    _clean_db()
    db: Session = SessionLocal()
    try:
        plan = create_plan(
            db,
            creator_id=1,
            title="Raid vote",
            duration_minutes=90,
            poll_options=[
                {"date": "2026-03-05T19:00:00"},
                {"date": "2026-03-06T19:00:00"},
            ],
            poll_duration_hours=2,
            start_poll_now=True,
            clock=FixedClock(NOW),
        )
        plan_id = plan.id
    finally:
        db.close()

    assert run_once(now=NOW + timedelta(hours=1)) == 0
    assert run_once(now=NOW + timedelta(hours=2)) == 1

    out = capsys.readouterr().out
    assert f"plan {plan_id}: expired (no_votes)" in out
    assert "Resolved 1 plan(s)" in out

    db = SessionLocal()
    try:
        assert db.get(EventPlan, plan_id).status == "expired"
        assert db.query(Event).count() == 0
    finally:
        db.close()
