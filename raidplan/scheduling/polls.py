# raidplan/scheduling/polls.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from raidplan.errors import StateTransitionRejected, ValidationError
from raidplan.scheduling.intervals import normalize_utc
from raidplan.scheduling.recurrence import resolve_zone

MIN_POLL_OPTIONS = 2
MAX_POLL_OPTIONS = 9
NONE_OPTION_LABEL = "None of these work"


class EventPlanStatus(str, Enum):
    DRAFT = "draft"
    POLLING = "polling"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class PollMode(str, Enum):
    STANDARD = "standard"
    ALL_OR_NOTHING = "all_or_nothing"


ALLOWED_TRANSITIONS = {
    EventPlanStatus.DRAFT: {EventPlanStatus.POLLING, EventPlanStatus.CANCELLED},
    EventPlanStatus.POLLING: {
        EventPlanStatus.COMPLETED,
        EventPlanStatus.EXPIRED,
        EventPlanStatus.CANCELLED,
    },
    EventPlanStatus.COMPLETED: set(),
    EventPlanStatus.EXPIRED: set(),
    EventPlanStatus.CANCELLED: set(),
}


def ensure_transition(current, target) -> None:
    current = EventPlanStatus(current)
    target = EventPlanStatus(target)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise StateTransitionRejected(
            f"cannot move an event plan from '{current.value}' to '{target.value}'",
            current=current.value,
            target=target.value,
        )


@dataclass(frozen=True)
class PollOption:
    date: datetime
    label: str

    def to_dict(self) -> dict:
        return {"date": self.date.isoformat(), "label": self.label}


def parse_poll_options(raw: Sequence) -> List[PollOption]:
    """Validate 2-9 dated options; dates are normalized to naive UTC."""
    if len(raw) < MIN_POLL_OPTIONS or len(raw) > MAX_POLL_OPTIONS:
        raise ValidationError(
            f"a poll needs between {MIN_POLL_OPTIONS} and {MAX_POLL_OPTIONS} time options",
            field="poll_options",
            count=len(raw),
        )

    options: List[PollOption] = []
    for i, item in enumerate(raw):
        if isinstance(item, PollOption):
            options.append(item)
            continue
        value = item.get("date")
        try:
            when = value if isinstance(value, datetime) else datetime.fromisoformat(value)
        except (TypeError, ValueError):
            raise ValidationError(
                "poll option date must be an ISO-8601 datetime",
                field=f"poll_options.{i}.date",
                value=value,
            )
        options.append(PollOption(date=normalize_utc(when), label=item.get("label") or ""))
    return options


@dataclass(frozen=True)
class Vote:
    voter_key: str
    option_index: int
    cast_at: datetime


def tally_votes(votes: Iterable[Vote], option_count: int) -> List[int]:
    """
    Count one vote per voter, keeping each voter's latest choice.

    Returns a list of length option_count + 1; the last entry is the
    "none of these work" option. Votes for unknown indexes are ignored.
    """
    latest: Dict[str, Vote] = {}
    for vote in votes:
        previous = latest.get(vote.voter_key)
        # ties on cast_at keep the later one in input order
        if previous is None or vote.cast_at >= previous.cast_at:
            latest[vote.voter_key] = vote

    tallies = [0] * (option_count + 1)
    for vote in latest.values():
        if 0 <= vote.option_index <= option_count:
            tallies[vote.option_index] += 1
    return tallies


@dataclass
class PollResolution:
    status: EventPlanStatus
    winning_index: Optional[int]
    tallies: List[int] = field(default_factory=list)
    none_votes: int = 0
    reason: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == EventPlanStatus.COMPLETED


def resolve_poll(
    options: Sequence[PollOption],
    votes: Iterable[Vote],
    mode: PollMode = PollMode.STANDARD,
) -> PollResolution:
    """
    Decide the outcome of a closed poll.

    - all_or_nothing: "none" at or above any dated option expires it
    - standard: "none" expires it only when it has votes and leads
    - no dated votes at all expires it
    - otherwise the most-voted dated option wins, earliest date on ties
    """
    mode = PollMode(mode)
    tallies = tally_votes(votes, len(options))
    none_votes = tallies[-1]
    dated = tallies[:-1]
    best = max(dated) if dated else 0

    if mode == PollMode.ALL_OR_NOTHING:
        # matching any single dated option is enough to sink the plan
        none_rejects = none_votes > 0 and any(none_votes >= count for count in dated)
        reason = "all_or_nothing_rejected"
    else:
        none_rejects = none_votes > 0 and none_votes >= best
        reason = "none_of_these_won"

    if none_rejects:
        return PollResolution(
            status=EventPlanStatus.EXPIRED,
            winning_index=None,
            tallies=tallies,
            none_votes=none_votes,
            reason=reason,
        )

    if best == 0:
        return PollResolution(
            status=EventPlanStatus.EXPIRED,
            winning_index=None,
            tallies=tallies,
            none_votes=none_votes,
            reason="no_votes",
        )

    winner = min(
        (i for i, count in enumerate(dated) if count == best),
        key=lambda i: (options[i].date, i),
    )
    return PollResolution(
        status=EventPlanStatus.COMPLETED,
        winning_index=winner,
        tallies=tallies,
        none_votes=none_votes,
        reason="winner",
    )


FALLBACK_EVENING_HOURS = (18, 19, 20, 21)


@dataclass(frozen=True)
class TimeSuggestion:
    date: datetime
    label: str
    available_count: int = 0


def fallback_time_suggestions(
    after: datetime,
    tz: str = "UTC",
    days: int = 7,
) -> List[TimeSuggestion]:
    """
    Generic evening presets for the next `days` days (6 PM to 9 PM local).

    `after` is naive UTC; returned dates are naive UTC too.
    """
    zone = resolve_zone(tz)
    local_after = after.replace(tzinfo=resolve_zone("UTC")).astimezone(zone)

    suggestions: List[TimeSuggestion] = []
    for day_offset in range(1, days + 1):
        day = local_after.date() + timedelta(days=day_offset)
        for hour in FALLBACK_EVENING_HOURS:
            local = datetime(day.year, day.month, day.day, hour, tzinfo=zone)
            when = normalize_utc(local)
            if when <= after:
                continue
            label = f"{local:%A} {local:%b} {local.day}, {hour % 12 or 12}:00 PM"
            suggestions.append(TimeSuggestion(date=when, label=label))
    return suggestions
