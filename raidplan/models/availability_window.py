# raidplan/models/availability_window.py
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from raidplan.models.base import Base
from raidplan.scheduling.intervals import AvailabilityStatus


class AvailabilityWindow(Base):
    """
    One span of time a user declared (or an event signup produced).

    Times are stored as naive UTC. Overlapping windows for the same user
    are allowed and reported as conflicts, never merged.
    """

    __tablename__ = "availability_windows"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, nullable=False, index=True)

    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)

    status = Column(String(16), nullable=False, default=AvailabilityStatus.AVAILABLE.value)

    game_id = Column(Integer, nullable=True)

    # Set for committed/freed windows produced by an event signup
    source_event_id = Column(
        Integer,
        ForeignKey("events.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )
