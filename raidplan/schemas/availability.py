# raidplan/schemas/availability.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

# Window shape and status are validated by the availability service.


class AvailabilityCreate(BaseModel):
    start_time: datetime
    end_time: datetime
    status: str = "available"
    game_id: Optional[int] = None


class AvailabilityUpdate(BaseModel):
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    status: Optional[str] = None
    game_id: Optional[int] = None
