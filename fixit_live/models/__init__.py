"""FixIT Live data models."""

from fixit_live.models.assignment import AssignmentOutcome, HelpRequest
from fixit_live.models.events import EventFrame, InboundEvent, OutboundEvent
from fixit_live.models.issue import (
    Issue,
    IssueCategory,
    IssuePriority,
    IssueStatus,
    Resolution,
    VoteType,
)
from fixit_live.models.user import (
    Actor,
    Availability,
    CandidateHelper,
    Contributions,
    Rating,
    Skill,
    SkillLevel,
    UserProfile,
)

__all__ = [
    "Actor",
    "AssignmentOutcome",
    "Availability",
    "CandidateHelper",
    "Contributions",
    "EventFrame",
    "HelpRequest",
    "InboundEvent",
    "Issue",
    "IssueCategory",
    "IssuePriority",
    "IssueStatus",
    "OutboundEvent",
    "Rating",
    "Resolution",
    "Skill",
    "SkillLevel",
    "UserProfile",
    "VoteType",
]
