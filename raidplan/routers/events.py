# raidplan/routers/events.py
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from raidplan.clock import Clock, get_clock
from raidplan.db.session import get_db
from raidplan.locks import KeyedLockRegistry, get_locks
from raidplan.models.event import Event
from raidplan.models.event_signup import EventSignup
from raidplan.models.roster_assignment import RosterAssignment
from raidplan.scheduling.heatmap import HeatmapGrid
from raidplan.scheduling.roster import RosterEntry
from raidplan.schemas.events import EventCancel, EventCreate, RosterUpdate, SignupCreate
from raidplan.services.event_service import cancel_event, create_event, get_event
from raidplan.services.heatmap_service import get_roster_heatmap
from raidplan.services.roster_service import (
    RosterView,
    auto_assign_roster,
    get_roster,
    signup_for_event,
    update_roster,
    withdraw_signup,
)

router = APIRouter()


def event_to_dict(e: Event) -> Dict[str, Any]:
    return {
        "id": e.id,
        "creator_id": e.creator_id,
        "title": e.title,
        "description": e.description,
        "game_id": e.game_id,
        "start_time": e.start_time.isoformat(),
        "end_time": e.end_time.isoformat(),
        "timezone": e.timezone,
        "slot_config": e.slot_config,
        "max_attendees": e.max_attendees,
        "auto_unbench": e.auto_unbench,
        "recurrence_group_id": e.recurrence_group_id,
        "recurrence_rule": e.recurrence_rule,
        "reminders": {
            "15min": e.reminder_15min,
            "1hour": e.reminder_1hour,
            "24hour": e.reminder_24hour,
        },
        "cancelled_at": e.cancelled_at.isoformat() if e.cancelled_at else None,
    }


def _signup_to_dict(s: EventSignup) -> Dict[str, Any]:
    return {
        "id": s.id,
        "user_id": s.user_id,
        "role": s.role,
        "preferred_roles": s.preferred_roles or [],
        "note": s.note,
        "signed_up_at": s.signed_up_at.isoformat(),
    }


def _assignment_to_dict(a: RosterAssignment) -> Dict[str, Any]:
    return {
        "signup_id": a.signup_id,
        "user_id": a.user_id,
        "slot": a.slot,
        "position": a.position,
        "is_override": a.is_override,
    }


def _roster_to_dict(view: RosterView) -> Dict[str, Any]:
    return {
        "event_id": view.event.id,
        "slot_config": view.slot_config.to_dict(),
        "assignments": [_assignment_to_dict(a) for a in view.assignments],
        "pool": [_signup_to_dict(s) for s in view.pool],
    }


def _heatmap_to_dict(grid: HeatmapGrid) -> Dict[str, Any]:
    return {
        "time_range": grid.time_range.to_dict(),
        "slot_minutes": grid.slot_minutes,
        "slots": [
            {"start": s.start.isoformat(), "end": s.end.isoformat(), "label": s.label}
            for s in grid.slots
        ],
        "rows": [{"user_id": r.user_id, "statuses": r.statuses} for r in grid.rows],
        "coverage": grid.coverage,
        "available_counts": grid.available_counts(),
    }


@router.post("", status_code=201)
def create_event_endpoint(
        payload: EventCreate,
        db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """
    Create an event. With `recurrence`, the whole series is created at
    once and shares one recurrence_group_id.
    """
    series = create_event(
        db,
        creator_id=payload.creator_id,
        title=payload.title,
        description=payload.description,
        game_id=payload.game_id,
        start_time=payload.start_time,
        end_time=payload.end_time,
        tz=payload.timezone,
        slot_config=payload.slot_config,
        max_attendees=payload.max_attendees,
        auto_unbench=payload.auto_unbench,
        recurrence=payload.recurrence.model_dump() if payload.recurrence else None,
        reminder_15min=payload.reminder_15min,
        reminder_1hour=payload.reminder_1hour,
        reminder_24hour=payload.reminder_24hour,
    )
    return {
        "event": event_to_dict(series.event),
        "recurrence_group_id": series.recurrence_group_id,
        "instances": [event_to_dict(e) for e in series.events],
    }


@router.get("/{event_id}")
def get_event_endpoint(event_id: int, db: Session = Depends(get_db)) -> Dict[str, Any]:
    return event_to_dict(get_event(db, event_id))


@router.post("/{event_id}/cancel")
def cancel_event_endpoint(
        event_id: int,
        payload: EventCancel,
        db: Session = Depends(get_db),
        clock: Clock = Depends(get_clock),
        locks: KeyedLockRegistry = Depends(get_locks),
) -> Dict[str, Any]:
    result = cancel_event(
        db, event_id=event_id, user_id=payload.user_id, clock=clock, locks=locks
    )
    return {"event": event_to_dict(result.event), "freed_windows": result.freed_windows}


@router.post("/{event_id}/signups")
def signup_endpoint(
        event_id: int,
        payload: SignupCreate,
        db: Session = Depends(get_db),
        clock: Clock = Depends(get_clock),
        locks: KeyedLockRegistry = Depends(get_locks),
) -> Dict[str, Any]:
    result = signup_for_event(
        db,
        event_id=event_id,
        user_id=payload.user_id,
        role=payload.role,
        preferred_roles=payload.preferred_roles,
        note=payload.note,
        clock=clock,
        locks=locks,
    )
    return {
        "signup": _signup_to_dict(result.signup),
        "assignment": _assignment_to_dict(result.assignment) if result.assignment else None,
        "created": result.created,
    }


@router.delete("/{event_id}/signups/{user_id}")
def withdraw_endpoint(
        event_id: int,
        user_id: int,
        db: Session = Depends(get_db),
        locks: KeyedLockRegistry = Depends(get_locks),
) -> Dict[str, Any]:
    result = withdraw_signup(db, event_id=event_id, user_id=user_id, locks=locks)
    return {
        "vacated_slot": result.vacated_slot,
        "vacated_position": result.vacated_position,
        "promoted": _assignment_to_dict(result.promoted) if result.promoted else None,
    }


@router.get("/{event_id}/roster")
def get_roster_endpoint(event_id: int, db: Session = Depends(get_db)) -> Dict[str, Any]:
    return _roster_to_dict(get_roster(db, event_id))


@router.patch("/{event_id}/roster")
def update_roster_endpoint(
        event_id: int,
        payload: RosterUpdate,
        db: Session = Depends(get_db),
        locks: KeyedLockRegistry = Depends(get_locks),
) -> Dict[str, Any]:
    """
    Replace the roster in one go. Any bad entry rejects the whole batch
    with a 422 listing every violation.
    """
    entries = [
        RosterEntry(
            user_id=a.user_id,
            slot=a.slot,
            position=a.position,
            signup_id=a.signup_id,
            is_override=a.is_override,
        )
        for a in payload.assignments
    ]
    view = update_roster(
        db, event_id=event_id, user_id=payload.user_id, entries=entries, locks=locks
    )
    return _roster_to_dict(view)


@router.post("/{event_id}/roster/auto-assign")
def auto_assign_endpoint(
        event_id: int,
        db: Session = Depends(get_db),
        locks: KeyedLockRegistry = Depends(get_locks),
) -> Dict[str, Any]:
    return _roster_to_dict(auto_assign_roster(db, event_id=event_id, locks=locks))


@router.get("/{event_id}/availability-heatmap")
def heatmap_endpoint(
        event_id: int,
        start: Optional[datetime] = Query(None),
        end: Optional[datetime] = Query(None),
        slot_minutes: Optional[int] = Query(None),
        db: Session = Depends(get_db),
) -> Dict[str, Any]:
    grid = get_roster_heatmap(
        db, event_id, range_start=start, range_end=end, slot_minutes=slot_minutes
    )
    return _heatmap_to_dict(grid)
