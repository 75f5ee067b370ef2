# raidplan/models/event.py
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text

from raidplan.models.base import Base


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)

    creator_id = Column(Integer, nullable=False, index=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    game_id = Column(Integer, nullable=True)

    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    timezone = Column(String(64), nullable=False, default="UTC")

    # {"type": "mmo", "tank": 2, ...}; null means the type's defaults
    slot_config = Column(JSON, nullable=True)
    max_attendees = Column(Integer, nullable=True)
    auto_unbench = Column(Boolean, nullable=False, default=True)

    # All instances of one recurring series share the group id
    recurrence_group_id = Column(String(36), nullable=True, index=True)
    recurrence_rule = Column(JSON, nullable=True)

    reminder_15min = Column(Boolean, nullable=False, default=True)
    reminder_1hour = Column(Boolean, nullable=False, default=False)
    reminder_24hour = Column(Boolean, nullable=False, default=False)

    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None
