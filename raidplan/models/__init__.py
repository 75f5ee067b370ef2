# raidplan/models/__init__.py
from raidplan.models.base import Base  # noqa: F401

from raidplan.models.availability_window import AvailabilityWindow  # noqa: F401
from raidplan.models.event import Event  # noqa: F401
from raidplan.models.event_signup import EventSignup  # noqa: F401
from raidplan.models.roster_assignment import RosterAssignment  # noqa: F401
from raidplan.models.event_plan import EventPlan  # noqa: F401
from raidplan.models.poll_vote import PollVote  # noqa: F401
