# raidplan/services/availability_service.py
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from raidplan.config import Settings, get_settings
from raidplan.errors import ForbiddenError, NotFoundError, ValidationError
from raidplan.locks import KeyedLockRegistry, maybe_hold
from raidplan.models.availability_window import AvailabilityWindow
from raidplan.models.event import Event
from raidplan.scheduling.conflicts import Conflict, find_conflicts, validate_window
from raidplan.scheduling.intervals import (
    USER_AUTHORED_STATUSES,
    AvailabilityStatus,
    normalize_utc,
)

logger = logging.getLogger(__name__)

# Narrow conflict report used when REPORT_ALL_CONFLICT_STATUSES is off
HARD_CONFLICT_STATUSES = (AvailabilityStatus.COMMITTED, AvailabilityStatus.BLOCKED)

# Marks an update field the caller did not send; None clears game_id
UNSET: Any = object()


@dataclass
class AvailabilityWithConflicts:
    window: AvailabilityWindow
    conflicts: List[Conflict] = field(default_factory=list)


def _user_status(status) -> AvailabilityStatus:
    try:
        value = AvailabilityStatus(status)
    except ValueError:
        raise ValidationError(
            f"unknown availability status '{status}'",
            field="status",
            value=status,
        )
    if value not in USER_AUTHORED_STATUSES:
        raise ValidationError(
            f"'{value.value}' windows are managed by event signups and cannot be set directly",
            field="status",
            value=value.value,
        )
    return value


def _lock_key(user_id: int) -> str:
    return f"user:{user_id}"


def _load_user_windows(db: Session, user_id: int) -> List[AvailabilityWindow]:
    return (
        db.query(AvailabilityWindow)
        .filter(AvailabilityWindow.user_id == user_id)
        .order_by(AvailabilityWindow.created_at.asc(), AvailabilityWindow.id.asc())
        .with_for_update()
        .all()
    )


def _detect(candidate, existing, settings: Settings, *, exclude_id=None, game_id=None):
    if settings.REPORT_ALL_CONFLICT_STATUSES:
        return find_conflicts(candidate, existing, exclude_id=exclude_id)
    return find_conflicts(
        candidate,
        existing,
        exclude_id=exclude_id,
        statuses=HARD_CONFLICT_STATUSES,
        exclude_game_id=game_id,
    )


def get_availability(
    db: Session,
    *,
    user_id: int,
    availability_id: int,
) -> AvailabilityWindow:
    row = db.get(AvailabilityWindow, availability_id)
    if row is None:
        raise NotFoundError("Availability window not found", availability_id=availability_id)
    if row.user_id != user_id:
        raise ForbiddenError(
            "Availability window belongs to another user",
            availability_id=availability_id,
        )
    return row


def create_availability(
    db: Session,
    *,
    user_id: int,
    start_time: datetime,
    end_time: datetime,
    status: str = AvailabilityStatus.AVAILABLE.value,
    game_id: Optional[int] = None,
    locks: Optional[KeyedLockRegistry] = None,
    settings: Optional[Settings] = None,
) -> AvailabilityWithConflicts:
    """
    Store a new availability window for a user.

    The write always succeeds once the window itself is valid; overlaps
    with the user's other windows come back as conflicts alongside it.
    """
    settings = settings or get_settings()
    status_value = _user_status(status)
    candidate = validate_window(
        normalize_utc(start_time),
        normalize_utc(end_time),
        settings.AVAILABILITY_MAX_HOURS,
    )

    with maybe_hold(locks, _lock_key(user_id)):
        existing = _load_user_windows(db, user_id)
        conflicts = _detect(candidate, existing, settings, game_id=game_id)

        row = AvailabilityWindow(
            user_id=user_id,
            start_time=candidate.start,
            end_time=candidate.end,
            status=status_value.value,
            game_id=game_id,
        )
        db.add(row)
        db.commit()
        db.refresh(row)

    logger.info(
        "User %s created availability window %s (%s)", user_id, row.id, row.status
    )
    if conflicts:
        logger.info(
            "Availability window %s overlaps %d existing window(s)", row.id, len(conflicts)
        )
    return AvailabilityWithConflicts(window=row, conflicts=conflicts)


def update_availability(
    db: Session,
    *,
    user_id: int,
    availability_id: int,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    status: Optional[str] = None,
    game_id: Any = UNSET,
    locks: Optional[KeyedLockRegistry] = None,
    settings: Optional[Settings] = None,
) -> AvailabilityWithConflicts:
    """
    Patch a user-authored window. Times and status left as None keep their
    value; game_id keeps its value unless passed, and None clears it.

    Committed windows are owned by event signups and cannot be edited.
    """
    settings = settings or get_settings()
    status_value = _user_status(status) if status is not None else None

    with maybe_hold(locks, _lock_key(user_id)):
        row = get_availability(db, user_id=user_id, availability_id=availability_id)
        if row.status == AvailabilityStatus.COMMITTED.value:
            raise ForbiddenError(
                "Committed windows are managed by event signups",
                availability_id=availability_id,
            )

        existing = _load_user_windows(db, user_id)
        candidate = validate_window(
            normalize_utc(start_time) if start_time is not None else row.start_time,
            normalize_utc(end_time) if end_time is not None else row.end_time,
            settings.AVAILABILITY_MAX_HOURS,
        )
        new_game_id = row.game_id if game_id is UNSET else game_id
        conflicts = _detect(
            candidate, existing, settings, exclude_id=row.id, game_id=new_game_id
        )

        row.start_time = candidate.start
        row.end_time = candidate.end
        row.game_id = new_game_id
        if status_value is not None:
            row.status = status_value.value
        db.commit()
        db.refresh(row)

    logger.info(
        "User %s updated availability window %s (%s)", user_id, row.id, row.status
    )
    return AvailabilityWithConflicts(window=row, conflicts=conflicts)


def delete_availability(
    db: Session,
    *,
    user_id: int,
    availability_id: int,
    locks: Optional[KeyedLockRegistry] = None,
) -> None:
    with maybe_hold(locks, _lock_key(user_id)):
        row = get_availability(db, user_id=user_id, availability_id=availability_id)
        if row.status == AvailabilityStatus.COMMITTED.value:
            raise ForbiddenError(
                "Committed windows are removed by withdrawing the event signup",
                availability_id=availability_id,
            )
        db.delete(row)
        db.commit()

    logger.info("User %s deleted availability window %s", user_id, availability_id)


def list_availability_for_user(
    db: Session,
    user_id: int,
    range_start: Optional[datetime] = None,
    range_end: Optional[datetime] = None,
) -> List[AvailabilityWindow]:
    """
    All windows of a user, oldest first. A range keeps only the windows
    overlapping it.
    """
    q = db.query(AvailabilityWindow).filter(AvailabilityWindow.user_id == user_id)
    if range_start is not None:
        q = q.filter(AvailabilityWindow.end_time > normalize_utc(range_start))
    if range_end is not None:
        q = q.filter(AvailabilityWindow.start_time < normalize_utc(range_end))
    return q.order_by(
        AvailabilityWindow.created_at.asc(), AvailabilityWindow.id.asc()
    ).all()


def find_availability_for_users(
    db: Session,
    user_ids: Iterable[int],
    range_start: datetime,
    range_end: datetime,
) -> Dict[int, List[AvailabilityWindow]]:
    user_ids = list(user_ids)
    by_user: Dict[int, List[AvailabilityWindow]] = {uid: [] for uid in user_ids}
    if not user_ids:
        return by_user

    rows = (
        db.query(AvailabilityWindow)
        .filter(
            AvailabilityWindow.user_id.in_(user_ids),
            AvailabilityWindow.end_time > normalize_utc(range_start),
            AvailabilityWindow.start_time < normalize_utc(range_end),
        )
        .order_by(AvailabilityWindow.created_at.asc(), AvailabilityWindow.id.asc())
        .all()
    )
    for row in rows:
        by_user[row.user_id].append(row)
    return by_user


def commit_availability_for_signup(
    db: Session,
    *,
    user_id: int,
    event: Event,
    commit: bool = True,
) -> AvailabilityWindow:
    """
    Record the committed window implied by signing up for `event`.

    Idempotent per (user, event): an existing committed window is returned
    as is.
    """
    row = (
        db.query(AvailabilityWindow)
        .filter(
            AvailabilityWindow.user_id == user_id,
            AvailabilityWindow.source_event_id == event.id,
            AvailabilityWindow.status == AvailabilityStatus.COMMITTED.value,
        )
        .first()
    )
    if row is not None:
        return row

    row = AvailabilityWindow(
        user_id=user_id,
        start_time=event.start_time,
        end_time=event.end_time,
        status=AvailabilityStatus.COMMITTED.value,
        game_id=event.game_id,
        source_event_id=event.id,
    )
    db.add(row)
    if commit:
        db.commit()
        db.refresh(row)
    else:
        db.flush()

    logger.info(
        "User %s committed to event %s (availability window %s)", user_id, event.id, row.id
    )
    return row


def free_availability_for_cancelled_event(
    db: Session,
    event_id: int,
    commit: bool = True,
) -> int:
    """
    Flip every committed window sourced from `event_id` to freed.

    Rows keep their id and source_event_id. Running it again finds
    nothing left to flip and returns 0.
    """
    rows = (
        db.query(AvailabilityWindow)
        .filter(
            AvailabilityWindow.source_event_id == event_id,
            AvailabilityWindow.status == AvailabilityStatus.COMMITTED.value,
        )
        .with_for_update()
        .all()
    )
    for row in rows:
        row.status = AvailabilityStatus.FREED.value

    if commit:
        db.commit()
    else:
        db.flush()

    if rows:
        logger.info("Freed %d committed window(s) for cancelled event %s", len(rows), event_id)
    return len(rows)


def release_availability_for_withdrawn_signup(
    db: Session,
    *,
    user_id: int,
    event_id: int,
    commit: bool = True,
) -> int:
    rows = (
        db.query(AvailabilityWindow)
        .filter(
            AvailabilityWindow.user_id == user_id,
            AvailabilityWindow.source_event_id == event_id,
            AvailabilityWindow.status == AvailabilityStatus.COMMITTED.value,
        )
        .all()
    )
    for row in rows:
        db.delete(row)

    if commit:
        db.commit()
    else:
        db.flush()
    return len(rows)
