"""Issue: the persistent help-desk ticket the coordination core mutates."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class IssueStatus(str, Enum):
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def can_advance_to(self, target: "IssueStatus") -> bool:
        """Forward-only: any strictly later lifecycle stage is reachable."""
        return target.rank > self.rank


_STATUS_ORDER = [
    IssueStatus.OPEN,
    IssueStatus.ASSIGNED,
    IssueStatus.IN_PROGRESS,
    IssueStatus.RESOLVED,
    IssueStatus.CLOSED,
]

# Statuses in which assigned_to may be non-null
ASSIGNABLE_STATUSES = frozenset(
    {IssueStatus.ASSIGNED, IssueStatus.IN_PROGRESS, IssueStatus.RESOLVED}
)
TERMINAL_STATUSES = frozenset({IssueStatus.RESOLVED, IssueStatus.CLOSED})


class IssueCategory(str, Enum):
    HARDWARE = "hardware"
    SOFTWARE = "software"
    NETWORK = "network"
    PRINTER = "printer"
    EMAIL = "email"
    ACCESS = "access"
    OTHER = "other"


class IssuePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class VoteType(str, Enum):
    UPVOTE = "upvote"
    DOWNVOTE = "downvote"


class Resolution(BaseModel):
    """Resolution record, set only once the issue reaches resolved."""

    solution: str
    resolved_by: str
    resolved_at: datetime
    time_spent: int = Field(default=0, ge=0)     # minutes


class Issue(BaseModel):
    """A technical issue posted by an owner and worked on by a helper."""

    id: str
    title: str
    description: str = ""
    category: IssueCategory = IssueCategory.OTHER
    priority: IssuePriority = IssuePriority.MEDIUM
    status: IssueStatus = IssueStatus.OPEN
    posted_by: str                               # Owner identity
    assigned_to: Optional[str] = None            # Helper identity
    required_skills: List[str] = []
    tags: List[str] = []
    upvotes: List[str] = []
    downvotes: List[str] = []
    resolution: Optional[Resolution] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_invariants(self) -> "Issue":
        if self.assigned_to is not None and self.status not in ASSIGNABLE_STATUSES:
            raise ValueError(
                f"assigned_to must be empty while status is {self.status.value}"
            )
        if self.resolution is not None and self.status.rank < IssueStatus.RESOLVED.rank:
            raise ValueError("resolution can only be recorded once resolved")
        if set(self.upvotes) & set(self.downvotes):
            raise ValueError("an identity cannot both upvote and downvote")
        return self

    @property
    def vote_count(self) -> int:
        return len(self.upvotes) - len(self.downvotes)

    def can_vote(self, identity: str) -> bool:
        return identity not in self.upvotes and identity not in self.downvotes

    def add_vote(self, identity: str, vote_type: VoteType) -> bool:
        """Record a vote. Returns False if the identity already voted."""
        if not self.can_vote(identity):
            return False
        if vote_type == VoteType.UPVOTE:
            self.upvotes.append(identity)
        else:
            self.downvotes.append(identity)
        return True
