# raidplan/models/event_signup.py
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from raidplan.models.base import Base


class EventSignup(Base):
    __tablename__ = "event_signups"
    __table_args__ = (UniqueConstraint("event_id", "user_id", name="uq_signup_event_user"),)

    id = Column(Integer, primary_key=True, index=True)

    event_id = Column(
        Integer,
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(Integer, nullable=False, index=True)

    # Primary role the user asked for (tank/healer/... or player/bench)
    role = Column(String(16), nullable=True)
    preferred_roles = Column(JSON, nullable=False, default=list)
    note = Column(String(200), nullable=True)

    signed_up_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    event = relationship("Event", backref="signups")
