# raidplan/models/roster_assignment.py
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import backref, relationship

from raidplan.models.base import Base


class RosterAssignment(Base):
    """
    Placement of a signup into a (slot, position) of an event roster.

    Uniqueness of (slot, position) per event is enforced by the roster
    service before writing; manual edits may leave gaps in positions.
    """

    __tablename__ = "roster_assignments"

    id = Column(Integer, primary_key=True, index=True)

    event_id = Column(
        Integer,
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    signup_id = Column(
        Integer,
        ForeignKey("event_signups.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    user_id = Column(Integer, nullable=False, index=True)

    slot = Column(String(16), nullable=True)
    position = Column(Integer, nullable=False, default=1)
    is_override = Column(Boolean, nullable=False, default=False)

    assigned_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    signup = relationship(
        "EventSignup",
        backref=backref("assignment", uselist=False, cascade="all, delete-orphan"),
    )
