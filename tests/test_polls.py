# tests/test_polls.py
from datetime import datetime, timedelta

import pytest

from raidplan.errors import StateTransitionRejected, ValidationError
from raidplan.scheduling.polls import (
    EventPlanStatus,
    PollMode,
    Vote,
    ensure_transition,
    fallback_time_suggestions,
    parse_poll_options,
    resolve_poll,
    tally_votes,
)

T0 = datetime(2026, 3, 1, 12, 0)


def _options(*days):
    return parse_poll_options(
        [{"date": datetime(2026, 3, d, 19, 0), "label": f"March {d}"} for d in days]
    )


def _votes(counts):
    """counts: list of vote counts per option index (last = none)."""
    votes = []
    n = 0
    for index, count in enumerate(counts):
        for _ in range(count):
            votes.append(Vote(voter_key=f"user:{n}", option_index=index, cast_at=T0))
            n += 1
    return votes


def test_all_or_nothing_none_matching_top_option_expires():
    resolution = resolve_poll(_options(5, 6), _votes([5, 3, 5]), PollMode.ALL_OR_NOTHING)

    assert resolution.status == EventPlanStatus.EXPIRED
    assert resolution.winning_index is None
    assert resolution.none_votes == 5


def test_all_or_nothing_none_matching_any_option_expires():
    resolution = resolve_poll(_options(5, 6), _votes([5, 3, 3]), PollMode.ALL_OR_NOTHING)
    assert resolution.status == EventPlanStatus.EXPIRED

    standard = resolve_poll(_options(5, 6), _votes([5, 3, 3]), PollMode.STANDARD)
    assert standard.status == EventPlanStatus.COMPLETED
    assert standard.winning_index == 0


def test_standard_highest_count_wins():
    resolution = resolve_poll(_options(5, 6, 7), _votes([1, 4, 2, 0]))

    assert resolution.succeeded
    assert resolution.winning_index == 1
    assert resolution.tallies == [1, 4, 2, 0]


def test_tie_goes_to_earliest_date():
    options = _options(9, 6, 7)
    resolution = resolve_poll(options, _votes([3, 3, 1, 0]))

    assert resolution.winning_index == 1


def test_standard_none_leading_expires():
    resolution = resolve_poll(_options(5, 6), _votes([2, 1, 3]))
    assert resolution.status == EventPlanStatus.EXPIRED
    assert resolution.reason == "none_of_these_won"


def test_no_votes_expires():
    resolution = resolve_poll(_options(5, 6), [])
    assert resolution.status == EventPlanStatus.EXPIRED
    assert resolution.reason == "no_votes"


def test_last_vote_per_voter_wins():
    votes = [
        Vote("user:1", 0, T0),
        Vote("user:1", 1, T0 + timedelta(minutes=5)),
        Vote("discord:77", 0, T0),
        Vote("discord:77", 2, T0),
    ]

    assert tally_votes(votes, 2) == [0, 1, 1]


def test_parse_poll_options_bounds():
    with pytest.raises(ValidationError):
        parse_poll_options([{"date": "2026-03-05T19:00:00"}])
    with pytest.raises(ValidationError):
        parse_poll_options([{"date": f"2026-03-{d:02d}T19:00:00"} for d in range(1, 11)])
    with pytest.raises(ValidationError):
        parse_poll_options([{"date": "soon"}, {"date": "2026-03-05T19:00:00"}])

    options = parse_poll_options(
        [{"date": "2026-03-05T19:00:00+01:00"}, {"date": "2026-03-06T19:00:00"}]
    )
    assert options[0].date == datetime(2026, 3, 5, 18, 0)


def test_state_machine_transitions():
    ensure_transition("draft", "polling")
    ensure_transition("polling", "completed")
    ensure_transition("draft", "cancelled")

    with pytest.raises(StateTransitionRejected) as exc:
        ensure_transition("completed", "completed")
    assert exc.value.context == {"current": "completed", "target": "completed"}

    with pytest.raises(StateTransitionRejected):
        ensure_transition("expired", "cancelled")


def test_fallback_suggestions_are_evening_presets():
    suggestions = fallback_time_suggestions(datetime(2026, 3, 1, 12, 0), tz="UTC")

    assert len(suggestions) == 28
    assert suggestions[0].date == datetime(2026, 3, 2, 18, 0)
    assert suggestions[0].label == "Monday Mar 2, 6:00 PM"
    assert suggestions[-1].date == datetime(2026, 3, 8, 21, 0)


def test_fallback_suggestions_in_local_zone():
    suggestions = fallback_time_suggestions(
        datetime(2026, 6, 1, 12, 0), tz="America/New_York"
    )

    # 6 PM EDT is 22:00 UTC
    assert suggestions[0].date == datetime(2026, 6, 2, 22, 0)
    assert suggestions[0].label.endswith("6:00 PM")
