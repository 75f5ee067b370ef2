# raidplan/models/event_plan.py
import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from raidplan.models.base import Base
from raidplan.scheduling.polls import EventPlanStatus, PollMode


def _new_plan_id() -> str:
    return str(uuid.uuid4())


class EventPlan(Base):
    """
    A proposed event whose time is decided by a poll.

    poll_options is a list of {"date": iso, "label": str}; the implicit
    "none of these work" option sits at index len(poll_options).
    """

    __tablename__ = "event_plans"

    id = Column(String(36), primary_key=True, default=_new_plan_id)

    creator_id = Column(Integer, nullable=False, index=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    game_id = Column(Integer, nullable=True)

    slot_config = Column(JSON, nullable=True)
    max_attendees = Column(Integer, nullable=True)
    auto_unbench = Column(Boolean, nullable=False, default=True)
    duration_minutes = Column(Integer, nullable=False)
    timezone = Column(String(64), nullable=False, default="UTC")

    poll_options = Column(JSON, nullable=False)
    poll_duration_hours = Column(Integer, nullable=False)
    poll_mode = Column(String(20), nullable=False, default=PollMode.STANDARD.value)
    # Reserved for re-running a rejected poll; every plan is round 1 for now.
    poll_round = Column(Integer, nullable=False, default=1)

    status = Column(String(16), nullable=False, default=EventPlanStatus.DRAFT.value, index=True)

    winning_option = Column(Integer, nullable=True)
    created_event_id = Column(
        Integer,
        ForeignKey("events.id", ondelete="SET NULL"),
        nullable=True,
    )

    reminder_15min = Column(Boolean, nullable=False, default=True)
    reminder_1hour = Column(Boolean, nullable=False, default=False)
    reminder_24hour = Column(Boolean, nullable=False, default=False)

    poll_started_at = Column(DateTime, nullable=True)
    poll_ends_at = Column(DateTime, nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )
