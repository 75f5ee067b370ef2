# tests/test_events_router.py
from datetime import datetime

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from raidplan.clock import FixedClock, get_clock
from raidplan.main import app
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

client = TestClient(app)
clock = FixedClock(datetime(2026, 2, 20, 12, 0))


def setup_module(module):
    Base.metadata.create_all(bind=engine)
    app.dependency_overrides[get_clock] = lambda: clock


def teardown_module(module):
    app.dependency_overrides.pop(get_clock, None)


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


def _create_event(**extra):
    payload = {
        "creator_id": 1,
        "title": "Raid night",
        "start_time": "2026-03-01T19:00:00",
        "end_time": "2026-03-01T21:00:00",
        "slot_config": {"type": "mmo", "tank": 1, "healer": 1, "dps": 2},
    }
    payload.update(extra)
    resp = client.post("/events", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


def _signup(event_id, user_id, role=None, **extra):
    resp = client.post(
        f"/events/{event_id}/signups",
        json={"user_id": user_id, "role": role, **extra},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_create_and_get_event():
    _clean_db()

    body = _create_event()
    event = body["event"]
    assert body["recurrence_group_id"] is None
    assert event["slot_config"] == {"type": "mmo", "tank": 1, "healer": 1, "dps": 2}

    resp = client.get(f"/events/{event['id']}")
    assert resp.status_code == 200
    assert resp.json()["title"] == "Raid night"

    resp = client.get("/events/999999")
    assert resp.status_code == 404


def test_create_recurring_series():
    _clean_db()

    body = _create_event(
        recurrence={"frequency": "weekly", "until": "2026-03-22T00:00:00"},
    )
    assert body["recurrence_group_id"]
    assert [e["start_time"] for e in body["instances"]] == [
        "2026-03-01T19:00:00",
        "2026-03-08T19:00:00",
        "2026-03-15T19:00:00",
    ]


def test_bad_slot_config_is_400():
    _clean_db()

    resp = client.post(
        "/events",
        json={
            "creator_id": 1,
            "title": "Raid",
            "start_time": "2026-03-01T19:00:00",
            "end_time": "2026-03-01T21:00:00",
            "slot_config": {"type": "generic", "tank": 2},
        },
    )
    assert resp.status_code == 400
    assert resp.json()["context"]["field"] == "slot_config.tank"


def test_signup_withdraw_and_roster_flow():
    _clean_db()
    event_id = _create_event()["event"]["id"]

    assert _signup(event_id, 10, "tank")["assignment"]["slot"] == "tank"
    assert _signup(event_id, 11, "tank")["assignment"] is None
    assert _signup(event_id, 12, "dps")["assignment"]["position"] == 1

    resp = client.get(f"/events/{event_id}/roster")
    assert resp.status_code == 200
    roster = resp.json()
    assert [p["user_id"] for p in roster["pool"]] == [11]
    assert len(roster["assignments"]) == 2

    resp = client.delete(f"/events/{event_id}/signups/10")
    assert resp.status_code == 200
    body = resp.json()
    assert body["vacated_slot"] == "tank"
    assert body["promoted"]["user_id"] == 11

    resp = client.delete(f"/events/{event_id}/signups/10")
    assert resp.status_code == 404


def test_roster_patch_rejects_whole_batch():
    _clean_db()
    event_id = _create_event()["event"]["id"]
    _signup(event_id, 10, "tank")
    _signup(event_id, 11, "dps")

    resp = client.patch(
        f"/events/{event_id}/roster",
        json={
            "user_id": 1,
            "assignments": [
                {"user_id": 10, "slot": "dps", "position": 1},
                {"user_id": 11, "slot": "dps", "position": 1},
                {"user_id": 42, "slot": "healer", "position": 1},
            ],
        },
    )
    assert resp.status_code == 422
    violations = resp.json()["context"]["violations"]
    assert [v["reason"] for v in violations] == ["duplicate_slot_position", "not_signed_up"]

    roster = client.get(f"/events/{event_id}/roster").json()
    assert {(a["user_id"], a["slot"]) for a in roster["assignments"]} == {(10, "tank"), (11, "dps")}

    resp = client.patch(
        f"/events/{event_id}/roster",
        json={
            "user_id": 1,
            "assignments": [
                {"user_id": 10, "slot": "dps", "position": 2},
                {"user_id": 11, "slot": "tank", "position": 1},
            ],
        },
    )
    assert resp.status_code == 200, resp.text
    by_user = {a["user_id"]: a for a in resp.json()["assignments"]}
    assert by_user[10]["is_override"] is True
    assert by_user[11]["slot"] == "tank"

    resp = client.post(f"/events/{event_id}/roster/auto-assign")
    assert resp.status_code == 200
    assert len(resp.json()["assignments"]) == 2


def test_cancel_event_frees_windows():
    _clean_db()
    event_id = _create_event()["event"]["id"]
    _signup(event_id, 10, "tank")

    resp = client.post(f"/events/{event_id}/cancel", json={"user_id": 10})
    assert resp.status_code == 403

    resp = client.post(f"/events/{event_id}/cancel", json={"user_id": 1})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["freed_windows"] == 1
    assert body["event"]["cancelled_at"] == "2026-02-20T12:00:00"

    windows = client.get("/availability", params={"user_id": 10}).json()["availability"]
    assert [w["status"] for w in windows] == ["freed"]

    resp = client.post(f"/events/{event_id}/cancel", json={"user_id": 1})
    assert resp.status_code == 409


def test_heatmap_for_signed_up_users():
    _clean_db()
    event_id = _create_event()["event"]["id"]
    _signup(event_id, 10, "tank")
    _signup(event_id, 11, "dps")

    client.post(
        "/availability?user_id=11",
        json={"start_time": "2026-03-01T18:00:00", "end_time": "2026-03-01T19:30:00"},
    )

    resp = client.get(
        f"/events/{event_id}/availability-heatmap",
        params={"start": "2026-03-01T18:00:00", "end": "2026-03-01T20:00:00"},
    )
    assert resp.status_code == 200, resp.text
    grid = resp.json()
    assert len(grid["slots"]) == 4
    assert grid["slots"][0]["label"] == "6:00 PM"
    rows = {r["user_id"]: r["statuses"] for r in grid["rows"]}
    assert rows[10] == ["none", "none", "committed", "committed"]
    # the committed window was created first, so it wins where both overlap
    assert rows[11] == ["available", "available", "committed", "committed"]
    assert grid["available_counts"] == [1, 1, 0, 0]

    resp = client.get(f"/events/{event_id}/availability-heatmap")
    assert len(resp.json()["slots"]) == 4
