# raidplan/routers/event_plans.py
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from raidplan.clock import Clock, get_clock
from raidplan.db.session import get_db
from raidplan.locks import KeyedLockRegistry, get_locks
from raidplan.models.event_plan import EventPlan
from raidplan.routers.events import event_to_dict
from raidplan.schemas.event_plans import EventPlanCreate, PlanAction, VoteCreate
from raidplan.services.event_plan_service import (
    cancel_plan,
    cast_vote,
    create_plan,
    get_plan,
    get_poll_results,
    resolve_plan,
    start_poll,
    suggest_times,
)

router = APIRouter()


def plan_to_dict(p: EventPlan) -> Dict[str, Any]:
    return {
        "id": p.id,
        "creator_id": p.creator_id,
        "title": p.title,
        "description": p.description,
        "game_id": p.game_id,
        "slot_config": p.slot_config,
        "max_attendees": p.max_attendees,
        "auto_unbench": p.auto_unbench,
        "duration_minutes": p.duration_minutes,
        "timezone": p.timezone,
        "poll_options": p.poll_options,
        "poll_duration_hours": p.poll_duration_hours,
        "poll_mode": p.poll_mode,
        "poll_round": p.poll_round,
        "status": p.status,
        "winning_option": p.winning_option,
        "created_event_id": p.created_event_id,
        "poll_started_at": p.poll_started_at.isoformat() if p.poll_started_at else None,
        "poll_ends_at": p.poll_ends_at.isoformat() if p.poll_ends_at else None,
    }


# Must be registered before "/{plan_id}"
@router.get("/time-suggestions")
def time_suggestions_endpoint(
        tz: Optional[str] = Query(None),
        user_ids: List[int] = Query(default=[]),
        duration_minutes: int = Query(60, ge=1, le=1440),
        db: Session = Depends(get_db),
        clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    result = suggest_times(
        db, clock=clock, tz=tz, user_ids=user_ids, duration_minutes=duration_minutes
    )
    return {
        "source": result.source,
        "suggestions": [
            {
                "date": s.date.isoformat(),
                "label": s.label,
                "available_count": s.available_count,
            }
            for s in result.suggestions
        ],
    }


@router.post("", status_code=201)
def create_plan_endpoint(
        payload: EventPlanCreate,
        db: Session = Depends(get_db),
        clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    plan = create_plan(
        db,
        creator_id=payload.creator_id,
        title=payload.title,
        description=payload.description,
        game_id=payload.game_id,
        slot_config=payload.slot_config,
        max_attendees=payload.max_attendees,
        auto_unbench=payload.auto_unbench,
        duration_minutes=payload.duration_minutes,
        poll_options=[o.model_dump() for o in payload.poll_options],
        poll_duration_hours=payload.poll_duration_hours,
        poll_mode=payload.poll_mode,
        timezone=payload.timezone,
        reminder_15min=payload.reminder_15min,
        reminder_1hour=payload.reminder_1hour,
        reminder_24hour=payload.reminder_24hour,
        start_poll_now=payload.start_poll,
        clock=clock,
    )
    return plan_to_dict(plan)


@router.get("/{plan_id}")
def get_plan_endpoint(plan_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    return plan_to_dict(get_plan(db, plan_id))


@router.post("/{plan_id}/start")
def start_poll_endpoint(
        plan_id: str,
        payload: PlanAction,
        db: Session = Depends(get_db),
        clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    return plan_to_dict(start_poll(db, plan_id=plan_id, user_id=payload.user_id, clock=clock))


@router.post("/{plan_id}/votes", status_code=201)
def vote_endpoint(
        plan_id: str,
        payload: VoteCreate,
        db: Session = Depends(get_db),
        clock: Clock = Depends(get_clock),
) -> Dict[str, Any]:
    vote = cast_vote(
        db,
        plan_id=plan_id,
        option_index=payload.option_index,
        user_id=payload.user_id,
        discord_id=payload.discord_id,
        clock=clock,
    )
    return {
        "id": vote.id,
        "plan_id": vote.plan_id,
        "voter_key": vote.voter_key,
        "option_index": vote.option_index,
        "cast_at": vote.cast_at.isoformat(),
    }


@router.get("/{plan_id}/results")
def results_endpoint(plan_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    results = get_poll_results(db, plan_id)
    return {
        "plan_id": plan_id,
        "status": results.plan.status,
        "options": [
            {**o.to_dict(), "votes": results.tallies[i]}
            for i, o in enumerate(results.options)
        ],
        "none_votes": results.none_votes,
        "total_voters": results.total_voters,
        "leading_index": results.leading_index,
    }


@router.post("/{plan_id}/cancel")
def cancel_plan_endpoint(
        plan_id: str,
        payload: PlanAction,
        db: Session = Depends(get_db),
) -> Dict[str, Any]:
    return plan_to_dict(cancel_plan(db, plan_id=plan_id, user_id=payload.user_id))


@router.post("/{plan_id}/resolve")
def resolve_plan_endpoint(
        plan_id: str,
        db: Session = Depends(get_db),
        clock: Clock = Depends(get_clock),
        locks: KeyedLockRegistry = Depends(get_locks),
) -> Dict[str, Any]:
    result = resolve_plan(db, plan_id=plan_id, clock=clock, locks=locks)
    return {
        "plan": plan_to_dict(result.plan),
        "reason": result.resolution.reason,
        "tallies": result.resolution.tallies,
        "event": event_to_dict(result.event) if result.event else None,
    }
