# raidplan/routers/availability.py
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from raidplan.db.session import get_db
from raidplan.locks import KeyedLockRegistry, get_locks
from raidplan.models.availability_window import AvailabilityWindow
from raidplan.schemas.availability import AvailabilityCreate, AvailabilityUpdate
from raidplan.services.availability_service import (
    UNSET,
    AvailabilityWithConflicts,
    create_availability,
    delete_availability,
    get_availability,
    list_availability_for_user,
    update_availability,
)

router = APIRouter()


def window_to_dict(w: AvailabilityWindow) -> Dict[str, Any]:
    return {
        "id": w.id,
        "user_id": w.user_id,
        "start_time": w.start_time.isoformat(),
        "end_time": w.end_time.isoformat(),
        "status": w.status,
        "game_id": w.game_id,
        "source_event_id": w.source_event_id,
    }


def _with_conflicts(result: AvailabilityWithConflicts) -> Dict[str, Any]:
    return {
        "availability": window_to_dict(result.window),
        "conflicts": [c.to_dict() for c in result.conflicts],
    }


@router.post("", status_code=201)
def create_availability_window(
        payload: AvailabilityCreate,
        user_id: int = Query(...),
        db: Session = Depends(get_db),
        locks: KeyedLockRegistry = Depends(get_locks),
) -> Dict[str, Any]:
    """
    Declare a window. Overlaps with the user's other windows are returned
    as conflicts; they never block the write.
    """
    result = create_availability(
        db,
        user_id=user_id,
        start_time=payload.start_time,
        end_time=payload.end_time,
        status=payload.status,
        game_id=payload.game_id,
        locks=locks,
    )
    return _with_conflicts(result)


@router.get("")
def list_availability_windows(
        user_id: int = Query(...),
        start: Optional[datetime] = Query(None),
        end: Optional[datetime] = Query(None),
        db: Session = Depends(get_db),
) -> Dict[str, Any]:
    windows = list_availability_for_user(db, user_id, range_start=start, range_end=end)
    return {"user_id": user_id, "availability": [window_to_dict(w) for w in windows]}


@router.get("/{availability_id}")
def get_availability_window(
        availability_id: int,
        user_id: int = Query(...),
        db: Session = Depends(get_db),
) -> Dict[str, Any]:
    window = get_availability(db, user_id=user_id, availability_id=availability_id)
    return window_to_dict(window)


@router.patch("/{availability_id}")
def update_availability_window(
        availability_id: int,
        payload: AvailabilityUpdate,
        user_id: int = Query(...),
        db: Session = Depends(get_db),
        locks: KeyedLockRegistry = Depends(get_locks),
) -> Dict[str, Any]:
    result = update_availability(
        db,
        user_id=user_id,
        availability_id=availability_id,
        start_time=payload.start_time,
        end_time=payload.end_time,
        status=payload.status,
        game_id=payload.game_id if "game_id" in payload.model_fields_set else UNSET,
        locks=locks,
    )
    return _with_conflicts(result)


@router.delete("/{availability_id}", status_code=204)
def delete_availability_window(
        availability_id: int,
        user_id: int = Query(...),
        db: Session = Depends(get_db),
        locks: KeyedLockRegistry = Depends(get_locks),
) -> None:
    delete_availability(db, user_id=user_id, availability_id=availability_id, locks=locks)
