# raidplan/schemas/event_plans.py
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from raidplan.schemas.events import SlotConfigPayload


class PollOptionPayload(BaseModel):
    date: datetime
    label: str = ""


class EventPlanCreate(BaseModel):
    creator_id: int
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    game_id: Optional[int] = None
    slot_config: Optional[SlotConfigPayload] = None
    max_attendees: Optional[int] = None
    auto_unbench: bool = True
    duration_minutes: int
    poll_options: List[PollOptionPayload]
    poll_duration_hours: int
    poll_mode: Literal["standard", "all_or_nothing"] = "standard"
    timezone: Optional[str] = None
    reminder_15min: bool = True
    reminder_1hour: bool = False
    reminder_24hour: bool = False
    start_poll: bool = False


class PlanAction(BaseModel):
    user_id: int


class VoteCreate(BaseModel):
    option_index: int
    user_id: Optional[int] = None
    discord_id: Optional[str] = None

    @model_validator(mode="after")
    def check_single_voter(self) -> "VoteCreate":
        if (self.user_id is None) == (self.discord_id is None):
            raise ValueError("exactly one of user_id or discord_id is required")
        return self
