# raidplan/schemas/events.py
from datetime import datetime
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

SlotConfigPayload = Dict[str, Union[str, int]]


class RecurrencePayload(BaseModel):
    frequency: Literal["weekly", "biweekly", "monthly"]
    until: datetime


class EventCreate(BaseModel):
    creator_id: int
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    game_id: Optional[int] = None
    start_time: datetime
    end_time: datetime
    timezone: Optional[str] = None
    slot_config: Optional[SlotConfigPayload] = None
    max_attendees: Optional[int] = None
    auto_unbench: bool = True
    recurrence: Optional[RecurrencePayload] = None
    reminder_15min: bool = True
    reminder_1hour: bool = False
    reminder_24hour: bool = False

    @field_validator("max_attendees")
    def validate_max_attendees(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("max_attendees must be positive")
        return v


class EventCancel(BaseModel):
    user_id: int


class SignupCreate(BaseModel):
    user_id: int
    role: Optional[str] = None
    preferred_roles: List[str] = Field(default_factory=list)
    note: Optional[str] = Field(default=None, max_length=200)


class RosterEntryPayload(BaseModel):
    user_id: int
    slot: Optional[str] = None
    position: int = 1
    signup_id: Optional[int] = None
    is_override: bool = False


class RosterUpdate(BaseModel):
    user_id: int
    assignments: List[RosterEntryPayload]
