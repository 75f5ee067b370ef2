# raidplan/models/poll_vote.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from raidplan.models.base import Base


class PollVote(Base):
    __tablename__ = "poll_votes"

    id = Column(Integer, primary_key=True, index=True)

    plan_id = Column(
        String(36),
        ForeignKey("event_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # "user:<id>" or "discord:<id>"; one counted vote per key
    voter_key = Column(String(64), nullable=False, index=True)
    user_id = Column(Integer, nullable=True)
    discord_id = Column(String(32), nullable=True)

    option_index = Column(Integer, nullable=False)
    cast_at = Column(DateTime, nullable=False)

    plan = relationship("EventPlan", backref="votes")
