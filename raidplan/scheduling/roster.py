# raidplan/scheduling/roster.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from raidplan.errors import RosterBatchRejected, ValidationError


class SlotType(str, Enum):
    MMO = "mmo"
    GENERIC = "generic"


TANK = "tank"
HEALER = "healer"
DPS = "dps"
FLEX = "flex"
PLAYER = "player"
BENCH = "bench"

MMO_ROLES = (TANK, HEALER, DPS, FLEX)
GENERIC_ROLES = (PLAYER, BENCH)
ROLES_BY_TYPE = {SlotType.MMO: MMO_ROLES, SlotType.GENERIC: GENERIC_ROLES}

DEFAULT_MMO_SLOTS = {"type": "mmo", TANK: 2, HEALER: 4, DPS: 14, FLEX: 5}
DEFAULT_GENERIC_SLOTS = {"type": "generic", PLAYER: 10, BENCH: 5}


@dataclass(frozen=True)
class SlotConfig:
    type: SlotType
    counts: Dict[str, int]

    @property
    def roles(self) -> Tuple[str, ...]:
        return ROLES_BY_TYPE[self.type]

    def count(self, role: str) -> int:
        return self.counts.get(role, 0)

    def capacity(self, role: str) -> Optional[int]:
        """Hard cap for a role; None means unlimited (bench)."""
        if role == BENCH:
            return None
        return self.count(role)

    def total_capacity(self) -> int:
        # bench is overflow and never counts toward "full"
        return sum(n for role, n in self.counts.items() if role != BENCH)

    def to_dict(self) -> dict:
        data: dict = {"type": self.type.value}
        data.update(self.counts)
        return data


def parse_slot_config(raw: Optional[Mapping], default: Optional[Mapping] = None) -> SlotConfig:
    """
    Validate a {type, <role>: count} mapping into a SlotConfig.

    Missing config falls back to `default` (generic defaults if not given).
    Negative counts and roles foreign to the type raise ValidationError.
    """
    if not raw:
        raw = default or DEFAULT_GENERIC_SLOTS

    try:
        slot_type = SlotType(raw.get("type"))
    except ValueError:
        raise ValidationError(
            "slot config type must be 'mmo' or 'generic'",
            field="slot_config.type",
            value=raw.get("type"),
        )

    allowed = ROLES_BY_TYPE[slot_type]
    counts: Dict[str, int] = {}
    for key, value in raw.items():
        if key == "type" or value is None:
            continue
        if key not in allowed:
            raise ValidationError(
                f"role '{key}' is not valid for a {slot_type.value} slot config",
                field=f"slot_config.{key}",
            )
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(
                f"slot count for '{key}' must be a non-negative integer",
                field=f"slot_config.{key}",
                value=value,
            )
        counts[key] = value

    return SlotConfig(type=slot_type, counts=counts)


@dataclass(frozen=True)
class RosterSignup:
    signup_id: int
    user_id: int
    signed_up_at: datetime
    role: Optional[str] = None
    preferred_roles: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Placement:
    signup_id: int
    user_id: int
    slot: Optional[str]
    position: int
    is_override: bool = False


@dataclass
class RosterResult:
    assignments: List[Placement] = field(default_factory=list)
    pool: List[RosterSignup] = field(default_factory=list)


def arrival_order(signups: Iterable[RosterSignup]) -> List[RosterSignup]:
    return sorted(signups, key=lambda s: (s.signed_up_at, s.signup_id))


def eligible_roles(signup: RosterSignup, config: SlotConfig) -> List[str]:
    """
    Roles the automatic pass may try for this signup, in order.

    mmo: primary role, then preferred roles as listed, then flex. A primary
    role configured with a zero count yields no roles at all.
    generic: player (unless the signup asked for bench), then bench.
    """
    if config.type == SlotType.GENERIC:
        if signup.role == BENCH:
            return [BENCH]
        if config.count(PLAYER) == 0:
            return []
        return [PLAYER, BENCH]

    if signup.role is not None and config.count(signup.role) == 0:
        return []

    ordered: List[str] = []
    for role in (signup.role, *signup.preferred_roles, FLEX):
        if role in MMO_ROLES and role not in ordered:
            ordered.append(role)
    return ordered


def _next_position(occupied: Set[int], capacity: Optional[int]) -> Optional[int]:
    position = 1
    while position in occupied:
        position += 1
    if capacity is not None and position > capacity:
        return None
    return position


def _occupancy(assignments: Iterable[Placement]) -> Dict[str, Set[int]]:
    occupied: Dict[str, Set[int]] = {}
    for a in assignments:
        if a.slot is not None:
            occupied.setdefault(a.slot, set()).add(a.position)
    return occupied


def assign_roster(
    signups: Iterable[RosterSignup],
    config: SlotConfig,
    existing: Sequence[Placement] = (),
) -> RosterResult:
    """
    Place signups into role slots in arrival order.

    Signups already present in `existing` keep their placement; everyone
    else takes the lowest free position of the first role in
    `eligible_roles` that still has room, or lands in the pool. The
    automatic pass never marks an assignment as an override.
    """
    already_placed = {a.signup_id for a in existing}
    occupied = _occupancy(existing)
    result = RosterResult()

    for signup in arrival_order(signups):
        if signup.signup_id in already_placed:
            continue

        placed = False
        for role in eligible_roles(signup, config):
            if role != BENCH and config.count(role) == 0:
                continue
            taken = occupied.setdefault(role, set())
            position = _next_position(taken, config.capacity(role))
            if position is None:
                continue
            taken.add(position)
            result.assignments.append(
                Placement(
                    signup_id=signup.signup_id,
                    user_id=signup.user_id,
                    slot=role,
                    position=position,
                )
            )
            placed = True
            break

        if not placed:
            result.pool.append(signup)

    return result


@dataclass(frozen=True)
class RosterEntry:
    """One row of a manually submitted roster batch."""

    user_id: int
    slot: Optional[str]
    position: int
    signup_id: Optional[int] = None
    is_override: bool = False


def validate_roster_batch(
    entries: Sequence[RosterEntry],
    signups: Iterable[RosterSignup],
    config: SlotConfig,
) -> List[Placement]:
    """
    Check a full replacement roster and resolve it into placements.

    Every problem in the batch is collected; if there is any, the whole
    batch is rejected with RosterBatchRejected. Entries placed outside the
    user's eligible roles are marked as overrides.
    """
    by_user = {s.user_id: s for s in signups}
    violations: List[dict] = []
    seen_signups: Set[int] = set()
    seen_slots: Dict[Tuple[str, int], int] = {}
    placements: List[Placement] = []

    for i, entry in enumerate(entries):
        signup = by_user.get(entry.user_id)
        if signup is None:
            violations.append(
                {"index": i, "user_id": entry.user_id, "reason": "not_signed_up"}
            )
            continue
        if entry.signup_id is not None and entry.signup_id != signup.signup_id:
            violations.append(
                {
                    "index": i,
                    "user_id": entry.user_id,
                    "signup_id": entry.signup_id,
                    "reason": "signup_mismatch",
                }
            )
            continue
        if signup.signup_id in seen_signups:
            violations.append(
                {"index": i, "user_id": entry.user_id, "reason": "duplicate_signup"}
            )
            continue
        seen_signups.add(signup.signup_id)

        if entry.position < 1:
            violations.append(
                {
                    "index": i,
                    "user_id": entry.user_id,
                    "position": entry.position,
                    "reason": "invalid_position",
                }
            )
            continue

        if entry.slot is not None:
            if entry.slot not in config.roles:
                violations.append(
                    {
                        "index": i,
                        "user_id": entry.user_id,
                        "slot": entry.slot,
                        "reason": "unknown_slot",
                    }
                )
                continue
            key = (entry.slot, entry.position)
            if key in seen_slots:
                violations.append(
                    {
                        "index": i,
                        "user_id": entry.user_id,
                        "slot": entry.slot,
                        "position": entry.position,
                        "conflicts_with_user_id": seen_slots[key],
                        "reason": "duplicate_slot_position",
                    }
                )
                continue
            seen_slots[key] = entry.user_id

        is_override = entry.is_override or (
            entry.slot is not None
            and entry.slot not in eligible_roles(signup, config)
        )
        placements.append(
            Placement(
                signup_id=signup.signup_id,
                user_id=signup.user_id,
                slot=entry.slot,
                position=entry.position,
                is_override=is_override,
            )
        )

    if violations:
        raise RosterBatchRejected(
            f"{len(violations)} invalid roster entries",
            violations=violations,
        )
    return placements


def find_promotion_candidate(
    vacated_slot: str,
    waitlist: Iterable[RosterSignup],
    config: SlotConfig,
) -> Optional[RosterSignup]:
    """
    Earliest waitlisted signup allowed into the vacated slot, or None.

    Uses the same role check as the automatic pass, restricted to the one
    vacated slot. Bench vacancies never promote anyone.
    """
    if vacated_slot == BENCH or vacated_slot not in config.roles:
        return None
    for signup in arrival_order(waitlist):
        if vacated_slot in eligible_roles(signup, config):
            return signup
    return None
