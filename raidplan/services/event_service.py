# raidplan/services/event_service.py
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Mapping, Optional, Union

from sqlalchemy.orm import Session

from raidplan.clock import Clock, SystemClock
from raidplan.config import Settings, get_settings
from raidplan.errors import ForbiddenError, NotFoundError, StateTransitionRejected
from raidplan.locks import KeyedLockRegistry, maybe_hold
from raidplan.models.event import Event
from raidplan.scheduling.intervals import TimeWindow, normalize_utc
from raidplan.scheduling.recurrence import RecurrenceRule, expand_recurrence, resolve_zone
from raidplan.scheduling.roster import DEFAULT_GENERIC_SLOTS, SlotConfig, parse_slot_config
from raidplan.services.availability_service import free_availability_for_cancelled_event

logger = logging.getLogger(__name__)


@dataclass
class CreatedEventSeries:
    events: List[Event] = field(default_factory=list)
    recurrence_group_id: Optional[str] = None

    @property
    def event(self) -> Event:
        return self.events[0]


@dataclass
class CancelledEvent:
    event: Event
    freed_windows: int


def get_event(db: Session, event_id: int) -> Event:
    event = db.get(Event, event_id)
    if event is None:
        raise NotFoundError("Event not found", event_id=event_id)
    return event


def slot_config_for(event: Event) -> SlotConfig:
    return parse_slot_config(event.slot_config, default=DEFAULT_GENERIC_SLOTS)


def _as_utc(dt: datetime) -> datetime:
    # naive values are taken as UTC, the storage representation
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def build_events(
    db: Session,
    *,
    creator_id: int,
    title: str,
    start_time: datetime,
    end_time: datetime,
    description: Optional[str] = None,
    game_id: Optional[int] = None,
    tz: Optional[str] = None,
    slot_config: Optional[Mapping] = None,
    max_attendees: Optional[int] = None,
    auto_unbench: bool = True,
    recurrence: Optional[Union[RecurrenceRule, Mapping]] = None,
    reminder_15min: bool = True,
    reminder_1hour: bool = False,
    reminder_24hour: bool = False,
    settings: Optional[Settings] = None,
) -> CreatedEventSeries:
    """
    Validate and add an event (or a whole recurring series) to the
    session without committing.
    """
    settings = settings or get_settings()
    tz = tz or settings.DEFAULT_TIMEZONE
    resolve_zone(tz)

    window = TimeWindow.utc(_as_utc(start_time), _as_utc(end_time))
    config = parse_slot_config(slot_config) if slot_config else None

    rule: Optional[RecurrenceRule] = None
    if recurrence is not None:
        rule = recurrence if isinstance(recurrence, RecurrenceRule) else RecurrenceRule.from_dict(recurrence)
        rule = RecurrenceRule(frequency=rule.frequency, until=_as_utc(rule.until))

    if rule is None:
        spans = [(window.start, window.end)]
        group_id = None
    else:
        occurrences = expand_recurrence(
            _as_utc(start_time),
            _as_utc(end_time),
            rule,
            tz=tz,
            max_instances=settings.MAX_RECURRENCE_INSTANCES,
        )
        spans = [(normalize_utc(o.start), normalize_utc(o.end)) for o in occurrences]
        group_id = str(uuid.uuid4())

    events: List[Event] = []
    for start, end in spans:
        event = Event(
            creator_id=creator_id,
            title=title,
            description=description,
            game_id=game_id,
            start_time=start,
            end_time=end,
            timezone=tz,
            slot_config=config.to_dict() if config else None,
            max_attendees=max_attendees,
            auto_unbench=auto_unbench,
            recurrence_group_id=group_id,
            recurrence_rule=rule.to_dict() if rule else None,
            reminder_15min=reminder_15min,
            reminder_1hour=reminder_1hour,
            reminder_24hour=reminder_24hour,
        )
        db.add(event)
        events.append(event)

    db.flush()
    return CreatedEventSeries(events=events, recurrence_group_id=group_id)


def create_event(db: Session, *, creator_id: int, title: str, **kwargs) -> CreatedEventSeries:
    """
    Create a single event, or a recurring series when `recurrence` is
    given. Every instance of a series shares one recurrence_group_id.
    """
    series = build_events(db, creator_id=creator_id, title=title, **kwargs)
    db.commit()
    for event in series.events:
        db.refresh(event)

    if series.recurrence_group_id:
        logger.info(
            "User %s created recurring series %s with %d event(s)",
            creator_id,
            series.recurrence_group_id,
            len(series.events),
        )
    else:
        logger.info("User %s created event %s", creator_id, series.event.id)
    return series


def list_series(db: Session, recurrence_group_id: str) -> List[Event]:
    return (
        db.query(Event)
        .filter(Event.recurrence_group_id == recurrence_group_id)
        .order_by(Event.start_time.asc())
        .all()
    )


def cancel_event(
    db: Session,
    *,
    event_id: int,
    user_id: int,
    clock: Optional[Clock] = None,
    locks: Optional[KeyedLockRegistry] = None,
) -> CancelledEvent:
    """
    Cancel an event and turn its attendees' committed windows into freed
    ones. Only the creator may cancel.
    """
    clock = clock or SystemClock()

    with maybe_hold(locks, f"event:{event_id}"):
        event = get_event(db, event_id)
        if event.creator_id != user_id:
            raise ForbiddenError("Only the event creator can cancel it", event_id=event_id)
        if event.is_cancelled:
            logger.warning("Event %s is already cancelled", event_id)
            raise StateTransitionRejected(
                "Event is already cancelled",
                current="cancelled",
                target="cancelled",
                event_id=event_id,
            )

        event.cancelled_at = clock.now()
        freed = free_availability_for_cancelled_event(db, event.id, commit=False)
        db.commit()
        db.refresh(event)

    logger.info("User %s cancelled event %s (%d window(s) freed)", user_id, event_id, freed)
    return CancelledEvent(event=event, freed_windows=freed)
