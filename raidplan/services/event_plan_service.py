# raidplan/services/event_plan_service.py
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from raidplan.clock import Clock, SystemClock
from raidplan.config import Settings, get_settings
from raidplan.errors import (
    ForbiddenError,
    NotFoundError,
    RaidPlanError,
    StateTransitionRejected,
    ValidationError,
)
from raidplan.locks import KeyedLockRegistry, maybe_hold
from raidplan.models.event import Event
from raidplan.models.event_plan import EventPlan
from raidplan.models.poll_vote import PollVote
from raidplan.scheduling.intervals import AvailabilityStatus, TimeWindow, overlaps
from raidplan.scheduling.polls import (
    EventPlanStatus,
    PollMode,
    PollOption,
    PollResolution,
    TimeSuggestion,
    Vote,
    ensure_transition,
    fallback_time_suggestions,
    parse_poll_options,
    resolve_poll,
    tally_votes,
)
from raidplan.scheduling.recurrence import resolve_zone
from raidplan.scheduling.roster import parse_slot_config
from raidplan.services.availability_service import find_availability_for_users
from raidplan.services.event_service import build_events
from raidplan.services.roster_service import add_signup

logger = logging.getLogger(__name__)

MIN_DURATION_MINUTES = 1
MAX_DURATION_MINUTES = 1440
MIN_POLL_HOURS = 1
MAX_POLL_HOURS = 72


@dataclass
class PlanResolution:
    plan: EventPlan
    resolution: PollResolution
    event: Optional[Event] = None


@dataclass
class PollResults:
    plan: EventPlan
    options: List[PollOption]
    tallies: List[int]
    none_votes: int
    total_voters: int
    leading_index: Optional[int] = None


@dataclass
class SuggestedTimes:
    suggestions: List[TimeSuggestion] = field(default_factory=list)
    source: str = "fallback"


def _options_of(plan: EventPlan) -> List[PollOption]:
    return parse_poll_options(plan.poll_options)


def _votes_of(db: Session, plan_id: str) -> List[Vote]:
    rows = (
        db.query(PollVote)
        .filter(PollVote.plan_id == plan_id)
        .order_by(PollVote.cast_at.asc(), PollVote.id.asc())
        .all()
    )
    return [Vote(voter_key=r.voter_key, option_index=r.option_index, cast_at=r.cast_at) for r in rows]


def _check_range(name: str, value: int, low: int, high: int) -> None:
    if value < low or value > high:
        raise ValidationError(
            f"{name} must be between {low} and {high}",
            field=name,
            value=value,
        )


def _open_poll(plan: EventPlan, now: datetime) -> None:
    ensure_transition(plan.status, EventPlanStatus.POLLING)
    plan.status = EventPlanStatus.POLLING.value
    plan.poll_started_at = now
    plan.poll_ends_at = now + timedelta(hours=plan.poll_duration_hours)


def get_plan(db: Session, plan_id: str) -> EventPlan:
    plan = db.get(EventPlan, plan_id)
    if plan is None:
        raise NotFoundError("Event plan not found", plan_id=plan_id)
    return plan


def create_plan(
    db: Session,
    *,
    creator_id: int,
    title: str,
    duration_minutes: int,
    poll_options: Sequence,
    poll_duration_hours: int,
    description: Optional[str] = None,
    game_id: Optional[int] = None,
    slot_config: Optional[Mapping] = None,
    max_attendees: Optional[int] = None,
    auto_unbench: bool = True,
    poll_mode: str = PollMode.STANDARD.value,
    timezone: Optional[str] = None,
    reminder_15min: bool = True,
    reminder_1hour: bool = False,
    reminder_24hour: bool = False,
    start_poll_now: bool = False,
    clock: Optional[Clock] = None,
    settings: Optional[Settings] = None,
) -> EventPlan:
    """
    Store a new event plan as a draft, or open its poll at once when
    `start_poll_now` is set.
    """
    clock = clock or SystemClock()
    settings = settings or get_settings()

    _check_range("duration_minutes", duration_minutes, MIN_DURATION_MINUTES, MAX_DURATION_MINUTES)
    _check_range("poll_duration_hours", poll_duration_hours, MIN_POLL_HOURS, MAX_POLL_HOURS)
    options = parse_poll_options(poll_options)
    try:
        mode = PollMode(poll_mode)
    except ValueError:
        raise ValidationError(
            "poll_mode must be 'standard' or 'all_or_nothing'",
            field="poll_mode",
            value=poll_mode,
        )
    config = parse_slot_config(slot_config) if slot_config else None
    tz = timezone or settings.DEFAULT_TIMEZONE
    resolve_zone(tz)

    plan = EventPlan(
        creator_id=creator_id,
        title=title,
        description=description,
        game_id=game_id,
        slot_config=config.to_dict() if config else None,
        max_attendees=max_attendees,
        auto_unbench=auto_unbench,
        duration_minutes=duration_minutes,
        timezone=tz,
        poll_options=[o.to_dict() for o in options],
        poll_duration_hours=poll_duration_hours,
        poll_mode=mode.value,
        status=EventPlanStatus.DRAFT.value,
        reminder_15min=reminder_15min,
        reminder_1hour=reminder_1hour,
        reminder_24hour=reminder_24hour,
    )
    if start_poll_now:
        _open_poll(plan, clock.now())

    db.add(plan)
    db.commit()
    db.refresh(plan)

    logger.info(
        "User %s created event plan %s (%s, %d options)",
        creator_id,
        plan.id,
        plan.status,
        len(options),
    )
    return plan


def start_poll(
    db: Session,
    *,
    plan_id: str,
    user_id: int,
    clock: Optional[Clock] = None,
) -> EventPlan:
    clock = clock or SystemClock()
    plan = get_plan(db, plan_id)
    if plan.creator_id != user_id:
        raise ForbiddenError("Only the plan creator can start its poll", plan_id=plan_id)

    _open_poll(plan, clock.now())
    db.commit()
    db.refresh(plan)

    logger.info("Poll for event plan %s opened until %s", plan.id, plan.poll_ends_at.isoformat())
    return plan


def cast_vote(
    db: Session,
    *,
    plan_id: str,
    option_index: int,
    user_id: Optional[int] = None,
    discord_id: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> PollVote:
    """
    Record a vote. A voter is either a registered user or an anonymous
    Discord identity; voting again replaces the earlier choice in the
    tally. `option_index == len(poll_options)` is "none of these work".
    """
    clock = clock or SystemClock()
    if (user_id is None) == (discord_id is None):
        raise ValidationError(
            "exactly one of user_id or discord_id is required",
            field="user_id",
        )

    plan = get_plan(db, plan_id)
    now = clock.now()
    if plan.status != EventPlanStatus.POLLING.value:
        raise StateTransitionRejected(
            "Votes are only accepted while the poll is open",
            current=plan.status,
            plan_id=plan_id,
        )
    if plan.poll_ends_at is not None and now >= plan.poll_ends_at:
        raise StateTransitionRejected(
            "The poll has closed",
            current=plan.status,
            plan_id=plan_id,
            poll_ends_at=plan.poll_ends_at.isoformat(),
        )

    option_count = len(plan.poll_options)
    if option_index < 0 or option_index > option_count:
        raise ValidationError(
            f"option_index must be between 0 and {option_count}",
            field="option_index",
            value=option_index,
        )

    voter_key = f"user:{user_id}" if user_id is not None else f"discord:{discord_id}"
    vote = PollVote(
        plan_id=plan_id,
        voter_key=voter_key,
        user_id=user_id,
        discord_id=discord_id,
        option_index=option_index,
        cast_at=now,
    )
    db.add(vote)
    db.commit()
    db.refresh(vote)

    logger.info("%s voted for option %d on event plan %s", voter_key, option_index, plan_id)
    return vote


def get_poll_results(db: Session, plan_id: str) -> PollResults:
    plan = get_plan(db, plan_id)
    options = _options_of(plan)
    votes = _votes_of(db, plan_id)
    tallies = tally_votes(votes, len(options))

    dated = tallies[:-1]
    best = max(dated) if dated else 0
    leading = None
    if best > 0:
        leading = min(
            (i for i, n in enumerate(dated) if n == best),
            key=lambda i: (options[i].date, i),
        )

    return PollResults(
        plan=plan,
        options=options,
        tallies=tallies,
        none_votes=tallies[-1],
        total_voters=len({v.voter_key for v in votes}),
        leading_index=leading,
    )


def cancel_plan(db: Session, *, plan_id: str, user_id: int) -> EventPlan:
    plan = get_plan(db, plan_id)
    if plan.creator_id != user_id:
        raise ForbiddenError("Only the plan creator can cancel it", plan_id=plan_id)

    try:
        ensure_transition(plan.status, EventPlanStatus.CANCELLED)
    except StateTransitionRejected:
        logger.warning("Rejected cancel of event plan %s in state %s", plan_id, plan.status)
        raise

    plan.status = EventPlanStatus.CANCELLED.value
    db.commit()
    db.refresh(plan)

    logger.info("User %s cancelled event plan %s", user_id, plan_id)
    return plan


def resolve_plan(
    db: Session,
    *,
    plan_id: str,
    clock: Optional[Clock] = None,
    locks: Optional[KeyedLockRegistry] = None,
    settings: Optional[Settings] = None,
) -> PlanResolution:
    """
    Close a poll whose deadline has passed and act on the result.

    The status flip is a compare-and-swap on status == 'polling', so when
    two resolvers race only one wins; the other gets
    StateTransitionRejected. A winning option materializes exactly one
    event, with the creator signed up to it.
    """
    clock = clock or SystemClock()
    now = clock.now()

    with maybe_hold(locks, f"plan:{plan_id}"):
        plan = get_plan(db, plan_id)
        if plan.status != EventPlanStatus.POLLING.value:
            logger.warning("Rejected resolve of event plan %s in state %s", plan_id, plan.status)
            raise StateTransitionRejected(
                f"Only polling plans can be resolved, this one is {plan.status}",
                current=plan.status,
                target=EventPlanStatus.COMPLETED.value,
                plan_id=plan_id,
            )
        if plan.poll_ends_at is not None and now < plan.poll_ends_at:
            raise StateTransitionRejected(
                "The poll is still open",
                current=plan.status,
                plan_id=plan_id,
                poll_ends_at=plan.poll_ends_at.isoformat(),
            )

        options = _options_of(plan)
        resolution = resolve_poll(options, _votes_of(db, plan_id), PollMode(plan.poll_mode))

        swapped = (
            db.query(EventPlan)
            .filter(
                EventPlan.id == plan_id,
                EventPlan.status == EventPlanStatus.POLLING.value,
            )
            .update(
                {
                    EventPlan.status: resolution.status.value,
                    EventPlan.winning_option: resolution.winning_index,
                    EventPlan.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        if swapped != 1:
            db.rollback()
            logger.warning("Event plan %s was resolved by another worker", plan_id)
            raise StateTransitionRejected(
                "Event plan was already resolved",
                target=resolution.status.value,
                plan_id=plan_id,
            )

        event = None
        if resolution.succeeded:
            winner = options[resolution.winning_index]
            series = build_events(
                db,
                creator_id=plan.creator_id,
                title=plan.title,
                description=plan.description,
                game_id=plan.game_id,
                start_time=winner.date,
                end_time=winner.date + timedelta(minutes=plan.duration_minutes),
                tz=plan.timezone,
                slot_config=plan.slot_config,
                max_attendees=plan.max_attendees,
                auto_unbench=plan.auto_unbench,
                reminder_15min=plan.reminder_15min,
                reminder_1hour=plan.reminder_1hour,
                reminder_24hour=plan.reminder_24hour,
                settings=settings,
            )
            event = series.event
            add_signup(db, event=event, user_id=plan.creator_id, clock=clock)
            db.query(EventPlan).filter(EventPlan.id == plan_id).update(
                {EventPlan.created_event_id: event.id},
                synchronize_session=False,
            )

        db.commit()
        db.refresh(plan)
        if event is not None:
            db.refresh(event)

    if event is not None:
        logger.info(
            "Event plan %s completed with option %d, created event %s",
            plan_id,
            resolution.winning_index,
            event.id,
        )
    else:
        logger.info("Event plan %s expired (%s)", plan_id, resolution.reason)
    return PlanResolution(plan=plan, resolution=resolution, event=event)


def resolve_due_plans(
    db: Session,
    *,
    clock: Optional[Clock] = None,
    locks: Optional[KeyedLockRegistry] = None,
) -> List[PlanResolution]:
    """
    Resolve every polling plan whose deadline has passed. Plans another
    worker resolves first, or that fail to resolve, are skipped so the
    rest of the batch still runs.
    """
    clock = clock or SystemClock()
    due_ids = [
        plan_id
        for (plan_id,) in db.query(EventPlan.id)
        .filter(
            EventPlan.status == EventPlanStatus.POLLING.value,
            EventPlan.poll_ends_at <= clock.now(),
        )
        .order_by(EventPlan.poll_ends_at.asc())
        .all()
    ]

    resolved: List[PlanResolution] = []
    for plan_id in due_ids:
        try:
            resolved.append(resolve_plan(db, plan_id=plan_id, clock=clock, locks=locks))
        except StateTransitionRejected as e:
            logger.warning("Skipping event plan %s: %s", plan_id, e.detail)
        except RaidPlanError as e:
            db.rollback()
            logger.error("Could not resolve event plan %s: %s", plan_id, e.detail)
    return resolved


def suggest_times(
    db: Session,
    *,
    clock: Optional[Clock] = None,
    tz: Optional[str] = None,
    user_ids: Sequence[int] = (),
    duration_minutes: int = 60,
    settings: Optional[Settings] = None,
) -> SuggestedTimes:
    """
    Evening time presets for a new poll.

    With `user_ids`, each preset is scored by how many of those users have
    an available window overlapping it and the list is sorted best first.
    """
    clock = clock or SystemClock()
    settings = settings or get_settings()
    now = clock.now()
    suggestions = fallback_time_suggestions(now, tz or settings.DEFAULT_TIMEZONE)
    if not user_ids or not suggestions:
        return SuggestedTimes(suggestions=suggestions, source="fallback")

    length = timedelta(minutes=duration_minutes)
    windows = find_availability_for_users(
        db, user_ids, suggestions[0].date, suggestions[-1].date + length
    )

    scored: List[TimeSuggestion] = []
    for s in suggestions:
        span = TimeWindow(s.date, s.date + length)
        count = 0
        for user_windows in windows.values():
            if any(
                w.status == AvailabilityStatus.AVAILABLE.value
                and overlaps(span, TimeWindow(w.start_time, w.end_time))
                for w in user_windows
            ):
                count += 1
        scored.append(TimeSuggestion(date=s.date, label=s.label, available_count=count))

    scored.sort(key=lambda s: (-s.available_count, s.date))
    return SuggestedTimes(suggestions=scored, source="availability")
