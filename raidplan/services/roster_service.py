# raidplan/services/roster_service.py
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from raidplan.clock import Clock, SystemClock
from raidplan.errors import ForbiddenError, NotFoundError, StateTransitionRejected, ValidationError
from raidplan.locks import KeyedLockRegistry, maybe_hold
from raidplan.models.event import Event
from raidplan.models.event_signup import EventSignup
from raidplan.models.roster_assignment import RosterAssignment
from raidplan.scheduling.roster import (
    BENCH,
    Placement,
    RosterEntry,
    RosterResult,
    RosterSignup,
    SlotConfig,
    SlotType,
    assign_roster,
    find_promotion_candidate,
    validate_roster_batch,
)
from raidplan.services.availability_service import (
    commit_availability_for_signup,
    release_availability_for_withdrawn_signup,
)
from raidplan.services.event_service import get_event, slot_config_for

logger = logging.getLogger(__name__)


@dataclass
class SignupResult:
    signup: EventSignup
    assignment: Optional[RosterAssignment]
    created: bool


@dataclass
class SignupWithdrawal:
    vacated_slot: Optional[str]
    vacated_position: Optional[int]
    promoted: Optional[RosterAssignment] = None


@dataclass
class RosterView:
    event: Event
    slot_config: SlotConfig
    assignments: List[RosterAssignment] = field(default_factory=list)
    pool: List[EventSignup] = field(default_factory=list)


def _lock_key(event_id: int) -> str:
    return f"event:{event_id}"


def _to_roster_signup(row: EventSignup) -> RosterSignup:
    return RosterSignup(
        signup_id=row.id,
        user_id=row.user_id,
        signed_up_at=row.signed_up_at,
        role=row.role,
        preferred_roles=tuple(row.preferred_roles or ()),
    )


def _to_placement(row: RosterAssignment) -> Placement:
    return Placement(
        signup_id=row.signup_id,
        user_id=row.user_id,
        slot=row.slot,
        position=row.position,
        is_override=row.is_override,
    )


def _load_signups(db: Session, event_id: int) -> List[EventSignup]:
    return (
        db.query(EventSignup)
        .filter(EventSignup.event_id == event_id)
        .order_by(EventSignup.signed_up_at.asc(), EventSignup.id.asc())
        .all()
    )


def _load_assignments(db: Session, event_id: int) -> List[RosterAssignment]:
    return (
        db.query(RosterAssignment)
        .filter(RosterAssignment.event_id == event_id)
        .order_by(RosterAssignment.slot.asc(), RosterAssignment.position.asc())
        .with_for_update()
        .all()
    )


def _check_roles(config: SlotConfig, role: Optional[str], preferred_roles: Sequence[str]) -> None:
    for name, value in [("role", role)] + [("preferred_roles", r) for r in preferred_roles]:
        if value is not None and value not in config.roles:
            raise ValidationError(
                f"role '{value}' is not part of this event's {config.type.value} roster",
                field=name,
                value=value,
            )


def _is_full(event: Event, placed: Sequence[RosterAssignment]) -> bool:
    if not event.max_attendees:
        return False
    seated = sum(1 for a in placed if a.slot is not None and a.slot != BENCH)
    return seated >= event.max_attendees


def _upsert_assignment(db: Session, event_id: int, placement: Placement) -> RosterAssignment:
    row = (
        db.query(RosterAssignment)
        .filter(RosterAssignment.signup_id == placement.signup_id)
        .first()
    )
    if row is None:
        row = RosterAssignment(event_id=event_id, signup_id=placement.signup_id)
        db.add(row)
    row.user_id = placement.user_id
    row.slot = placement.slot
    row.position = placement.position
    row.is_override = placement.is_override
    return row


def add_signup(
    db: Session,
    *,
    event: Event,
    user_id: int,
    role: Optional[str] = None,
    preferred_roles: Sequence[str] = (),
    note: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> SignupResult:
    """
    Sign a user up, try to seat them and commit their availability,
    without committing the transaction.
    """
    clock = clock or SystemClock()
    config = slot_config_for(event)
    preferred_roles = list(preferred_roles or ())
    _check_roles(config, role, preferred_roles)

    existing = (
        db.query(EventSignup)
        .filter(EventSignup.event_id == event.id, EventSignup.user_id == user_id)
        .first()
    )
    if existing is not None:
        return SignupResult(signup=existing, assignment=existing.assignment, created=False)

    signup = EventSignup(
        event_id=event.id,
        user_id=user_id,
        role=role,
        preferred_roles=preferred_roles,
        note=note,
        signed_up_at=clock.now(),
    )
    db.add(signup)
    db.flush()

    assignment = None
    placed = [a for a in _load_assignments(db, event.id) if a.slot is not None]
    if not _is_full(event, placed):
        result = assign_roster(
            [_to_roster_signup(signup)],
            config,
            existing=[_to_placement(a) for a in placed],
        )
        if result.assignments:
            assignment = _upsert_assignment(db, event.id, result.assignments[0])

    commit_availability_for_signup(db, user_id=user_id, event=event, commit=False)
    db.flush()
    return SignupResult(signup=signup, assignment=assignment, created=True)


def signup_for_event(
    db: Session,
    *,
    event_id: int,
    user_id: int,
    role: Optional[str] = None,
    preferred_roles: Sequence[str] = (),
    note: Optional[str] = None,
    clock: Optional[Clock] = None,
    locks: Optional[KeyedLockRegistry] = None,
) -> SignupResult:
    """
    Sign a user up for an event.

    Signing up twice returns the existing signup unchanged. New signups
    are seated right away when their roles have room; otherwise they wait
    in the pool.
    """
    with maybe_hold(locks, _lock_key(event_id)):
        event = get_event(db, event_id)
        if event.is_cancelled:
            raise StateTransitionRejected(
                "Cannot sign up for a cancelled event",
                current="cancelled",
                event_id=event_id,
            )

        result = add_signup(
            db,
            event=event,
            user_id=user_id,
            role=role,
            preferred_roles=preferred_roles,
            note=note,
            clock=clock,
        )
        db.commit()
        db.refresh(result.signup)
        if result.assignment is not None:
            db.refresh(result.assignment)

    if result.created:
        where = (
            f"{result.assignment.slot} #{result.assignment.position}"
            if result.assignment is not None
            else "pool"
        )
        logger.info("User %s signed up for event %s (%s)", user_id, event_id, where)
    return result


def _waitlist(db: Session, event_id: int, config: SlotConfig) -> List[RosterSignup]:
    waitlist: List[RosterSignup] = []
    for signup in _load_signups(db, event_id):
        assignment = signup.assignment
        if assignment is None or assignment.slot is None:
            waitlist.append(_to_roster_signup(signup))
        elif config.type == SlotType.GENERIC and assignment.slot == BENCH:
            waitlist.append(_to_roster_signup(signup))
    return waitlist


def withdraw_signup(
    db: Session,
    *,
    event_id: int,
    user_id: int,
    locks: Optional[KeyedLockRegistry] = None,
) -> SignupWithdrawal:
    """
    Remove a user's signup, its roster seat and its committed window.

    When the event has auto_unbench on, the earliest eligible waiting
    signup is moved into the vacated seat.
    """
    with maybe_hold(locks, _lock_key(event_id)):
        event = get_event(db, event_id)
        signup = (
            db.query(EventSignup)
            .filter(EventSignup.event_id == event_id, EventSignup.user_id == user_id)
            .first()
        )
        if signup is None:
            raise NotFoundError("Signup not found", event_id=event_id, user_id=user_id)

        vacated = signup.assignment
        withdrawal = SignupWithdrawal(
            vacated_slot=vacated.slot if vacated is not None else None,
            vacated_position=vacated.position if vacated is not None else None,
        )

        db.delete(signup)
        db.flush()
        release_availability_for_withdrawn_signup(
            db, user_id=user_id, event_id=event_id, commit=False
        )

        config = slot_config_for(event)
        capacity = (
            config.capacity(withdrawal.vacated_slot)
            if withdrawal.vacated_slot is not None
            else None
        )
        # manual seats past the configured count are not refilled
        within_capacity = capacity is None or withdrawal.vacated_position <= capacity

        if withdrawal.vacated_slot is not None and event.auto_unbench and within_capacity:
            candidate = find_promotion_candidate(
                withdrawal.vacated_slot,
                _waitlist(db, event_id, config),
                config,
            )
            if candidate is not None:
                withdrawal.promoted = _upsert_assignment(
                    db,
                    event_id,
                    Placement(
                        signup_id=candidate.signup_id,
                        user_id=candidate.user_id,
                        slot=withdrawal.vacated_slot,
                        position=withdrawal.vacated_position,
                    ),
                )

        db.commit()
        if withdrawal.promoted is not None:
            db.refresh(withdrawal.promoted)

    logger.info("User %s withdrew from event %s", user_id, event_id)
    if withdrawal.promoted is not None:
        logger.info(
            "Promoted user %s into %s #%s on event %s",
            withdrawal.promoted.user_id,
            withdrawal.vacated_slot,
            withdrawal.vacated_position,
            event_id,
        )
    return withdrawal


def get_roster(db: Session, event_id: int) -> RosterView:
    event = get_event(db, event_id)
    signups = _load_signups(db, event_id)
    assignments = (
        db.query(RosterAssignment)
        .filter(RosterAssignment.event_id == event_id, RosterAssignment.slot.isnot(None))
        .order_by(RosterAssignment.slot.asc(), RosterAssignment.position.asc())
        .all()
    )
    seated = {a.signup_id for a in assignments}
    return RosterView(
        event=event,
        slot_config=slot_config_for(event),
        assignments=assignments,
        pool=[s for s in signups if s.id not in seated],
    )


def auto_assign_roster(
    db: Session,
    *,
    event_id: int,
    locks: Optional[KeyedLockRegistry] = None,
) -> RosterView:
    """
    Seat every waiting signup that fits. Existing seats, manual ones
    included, are left where they are.
    """
    with maybe_hold(locks, _lock_key(event_id)):
        event = get_event(db, event_id)
        config = slot_config_for(event)
        placed = [a for a in _load_assignments(db, event_id) if a.slot is not None]

        signups = [_to_roster_signup(s) for s in _load_signups(db, event_id)]
        result: RosterResult = assign_roster(
            signups, config, existing=[_to_placement(a) for a in placed]
        )

        seated = list(placed)
        for placement in result.assignments:
            if _is_full(event, seated) and placement.slot != BENCH:
                continue
            seated.append(_upsert_assignment(db, event_id, placement))
        db.commit()

    logger.info(
        "Auto-assigned %d signup(s) on event %s, %d left in pool",
        len(seated) - len(placed),
        event_id,
        len(result.pool),
    )
    return get_roster(db, event_id)


def update_roster(
    db: Session,
    *,
    event_id: int,
    user_id: int,
    entries: Sequence[RosterEntry],
    locks: Optional[KeyedLockRegistry] = None,
) -> RosterView:
    """
    Replace the whole roster with `entries`.

    Either every entry is valid and the roster is swapped in one
    transaction, or RosterBatchRejected lists every bad entry and nothing
    changes. Signups left out of the batch go back to the pool.
    """
    with maybe_hold(locks, _lock_key(event_id)):
        event = get_event(db, event_id)
        if event.creator_id != user_id:
            raise ForbiddenError("Only the event creator can edit the roster", event_id=event_id)

        config = slot_config_for(event)
        signups = [_to_roster_signup(s) for s in _load_signups(db, event_id)]
        placements = validate_roster_batch(entries, signups, config)

        try:
            for row in _load_assignments(db, event_id):
                db.delete(row)
            db.flush()
            for placement in placements:
                db.add(
                    RosterAssignment(
                        event_id=event_id,
                        signup_id=placement.signup_id,
                        user_id=placement.user_id,
                        slot=placement.slot,
                        position=placement.position,
                        is_override=placement.is_override,
                    )
                )
            db.commit()
        except Exception:
            db.rollback()
            raise

    overrides = sum(1 for p in placements if p.is_override)
    logger.info(
        "User %s replaced roster of event %s (%d entries, %d override(s))",
        user_id,
        event_id,
        len(placements),
        overrides,
    )
    return get_roster(db, event_id)
