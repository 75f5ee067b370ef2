# tests/test_roster.py
from datetime import datetime, timedelta

import pytest

from raidplan.errors import RosterBatchRejected, ValidationError
from raidplan.scheduling.roster import (
    Placement,
    RosterEntry,
    RosterSignup,
    SlotType,
    assign_roster,
    eligible_roles,
    find_promotion_candidate,
    parse_slot_config,
    validate_roster_batch,
)

T0 = datetime(2026, 3, 1, 12, 0)


def _signup(n, role=None, preferred=()):
    return RosterSignup(
        signup_id=n,
        user_id=100 + n,
        signed_up_at=T0 + timedelta(minutes=n),
        role=role,
        preferred_roles=tuple(preferred),
    )


def _slots(result):
    return {(a.user_id, a.slot, a.position) for a in result.assignments}


def test_parse_slot_config_validation():
    config = parse_slot_config({"type": "mmo", "tank": 2, "healer": 3})
    assert config.type == SlotType.MMO
    assert config.count("tank") == 2
    assert config.count("dps") == 0

    with pytest.raises(ValidationError):
        parse_slot_config({"type": "mmo", "tank": -1})
    with pytest.raises(ValidationError):
        parse_slot_config({"type": "mmo", "player": 3})
    with pytest.raises(ValidationError):
        parse_slot_config({"type": "arena", "player": 3})


def test_missing_config_uses_default():
    config = parse_slot_config(None)
    assert config.type == SlotType.GENERIC
    assert config.count("player") == 10


def test_sixth_dps_lands_in_pool():
    config = parse_slot_config({"type": "mmo", "tank": 1, "healer": 1, "dps": 3})
    signups = [
        _signup(1, "tank"),
        _signup(2, "healer"),
        _signup(3, "dps"),
        _signup(4, "dps"),
        _signup(5, "dps"),
        _signup(6, "dps"),
    ]

    result = assign_roster(signups, config)

    assert [s.signup_id for s in result.pool] == [6]
    assert _slots(result) == {
        (101, "tank", 1),
        (102, "healer", 1),
        (103, "dps", 1),
        (104, "dps", 2),
        (105, "dps", 3),
    }
    assert not any(a.is_override for a in result.assignments)


def test_reordering_changes_who_is_placed_but_not_capacity():
    config = parse_slot_config({"type": "mmo", "tank": 1, "healer": 1, "dps": 3})
    signups = [_signup(n, "dps") for n in range(1, 6)]

    first = assign_roster(signups, config)
    reordered = [
        RosterSignup(s.signup_id, s.user_id, T0 - timedelta(minutes=s.signup_id), s.role)
        for s in signups
    ]
    second = assign_roster(reordered, config)

    assert len(first.assignments) == len(second.assignments) == 3
    assert {a.user_id for a in first.assignments} == {101, 102, 103}
    assert {a.user_id for a in second.assignments} == {103, 104, 105}


def test_preferred_roles_then_flex():
    config = parse_slot_config({"type": "mmo", "tank": 1, "healer": 1, "dps": 1, "flex": 1})
    signups = [
        _signup(1, "tank"),
        _signup(2, "tank", preferred=["healer"]),
        _signup(3, "tank", preferred=["healer"]),
        _signup(4, "tank"),
    ]

    result = assign_roster(signups, config)

    assert _slots(result) == {(101, "tank", 1), (102, "healer", 1), (103, "flex", 1)}
    assert [s.signup_id for s in result.pool] == [4]


def test_zero_count_primary_role_goes_to_pool():
    config = parse_slot_config({"type": "mmo", "tank": 0, "healer": 2, "flex": 2})
    signup = _signup(1, "tank", preferred=["healer"])

    assert eligible_roles(signup, config) == []
    result = assign_roster([signup], config)
    assert result.assignments == []
    assert [s.signup_id for s in result.pool] == [1]


def test_generic_overflow_goes_to_bench():
    config = parse_slot_config({"type": "generic", "player": 2, "bench": 1})
    signups = [_signup(n) for n in range(1, 5)] + [_signup(5, "bench")]

    result = assign_roster(signups, config)

    assert _slots(result) == {
        (101, "player", 1),
        (102, "player", 2),
        (103, "bench", 1),
        (104, "bench", 2),
        (105, "bench", 3),
    }
    assert result.pool == []


def test_existing_placements_are_respected_and_gaps_filled():
    config = parse_slot_config({"type": "mmo", "dps": 3})
    existing = [Placement(signup_id=9, user_id=109, slot="dps", position=2, is_override=True)]
    signups = [_signup(1, "dps"), _signup(2, "dps"), _signup(3, "dps")]

    result = assign_roster(signups, config, existing=existing)

    assert _slots(result) == {(101, "dps", 1), (102, "dps", 3)}
    assert [s.signup_id for s in result.pool] == [3]


def test_batch_rejects_every_violation():
    config = parse_slot_config({"type": "mmo", "tank": 2, "dps": 2})
    signups = [_signup(1, "tank"), _signup(2, "dps"), _signup(3, "dps")]
    entries = [
        RosterEntry(user_id=101, slot="tank", position=1),
        RosterEntry(user_id=102, slot="tank", position=1),
        RosterEntry(user_id=999, slot="dps", position=1),
        RosterEntry(user_id=103, slot="bench", position=1),
    ]

    with pytest.raises(RosterBatchRejected) as exc:
        validate_roster_batch(entries, signups, config)

    reasons = [v["reason"] for v in exc.value.violations]
    assert reasons == ["duplicate_slot_position", "not_signed_up", "unknown_slot"]
    assert exc.value.violations[0]["conflicts_with_user_id"] == 101


def test_batch_rejects_duplicate_signup_and_bad_position():
    config = parse_slot_config({"type": "generic", "player": 5})
    signups = [_signup(1), _signup(2)]
    entries = [
        RosterEntry(user_id=101, slot="player", position=1),
        RosterEntry(user_id=101, slot="player", position=2),
        RosterEntry(user_id=102, slot="player", position=0),
    ]

    with pytest.raises(RosterBatchRejected) as exc:
        validate_roster_batch(entries, signups, config)

    assert [v["reason"] for v in exc.value.violations] == ["duplicate_signup", "invalid_position"]


def test_batch_marks_off_role_placements_as_override():
    config = parse_slot_config({"type": "mmo", "tank": 1, "healer": 1, "dps": 2})
    signups = [_signup(1, "tank"), _signup(2, "dps")]
    entries = [
        RosterEntry(user_id=101, slot="healer", position=1),
        RosterEntry(user_id=102, slot="dps", position=2),
    ]

    placements = validate_roster_batch(entries, signups, config)

    assert [p.is_override for p in placements] == [True, False]
    assert placements[1].position == 2


def test_promotion_picks_earliest_eligible():
    config = parse_slot_config({"type": "mmo", "tank": 1, "healer": 1, "dps": 2})
    waitlist = [_signup(4, "dps"), _signup(2, "tank"), _signup(3, "healer", preferred=["dps"])]

    candidate = find_promotion_candidate("dps", waitlist, config)
    assert candidate.signup_id == 3

    assert find_promotion_candidate("healer", [_signup(5, "tank")], config) is None


def test_bench_vacancy_never_promotes():
    config = parse_slot_config({"type": "generic", "player": 2, "bench": 2})
    assert find_promotion_candidate("bench", [_signup(1)], config) is None
    assert find_promotion_candidate("player", [_signup(1)], config).signup_id == 1
