"""User profiles, public actor views and the ranking candidate view."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Availability(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    UNAVAILABLE = "unavailable"


class SkillLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class Skill(BaseModel):
    name: str
    level: SkillLevel = SkillLevel.INTERMEDIATE
    verified: bool = False


class Rating(BaseModel):
    average: float = Field(default=0.0, ge=0, le=5)
    count: int = Field(default=0, ge=0)


class Contributions(BaseModel):
    issues_resolved: int = Field(default=0, ge=0)
    issues_posted: int = Field(default=0, ge=0)
    total_time_helped: int = Field(default=0, ge=0)    # minutes
    points: int = Field(default=0, ge=0)


class Actor(BaseModel):
    """Public profile fields stamped on every outbound event."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    display_name: str
    external_id: str


class UserProfile(BaseModel):
    """
    Identity store record as seen by the coordination core.
    Carries no credential or other secret fields.
    """

    id: str
    external_id: str                        # Employee ID
    first_name: str
    last_name: str
    department: Optional[str] = None
    position: str = ""
    skills: List[Skill] = []
    rating: Rating = Rating()
    contributions: Contributions = Contributions()
    availability: Availability = Availability.AVAILABLE
    last_active: datetime
    is_active: bool = True

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def to_actor(self) -> Actor:
        return Actor(
            id=self.id,
            display_name=self.full_name,
            external_id=self.external_id,
        )

    def to_candidate(self) -> "CandidateHelper":
        return CandidateHelper(
            identity=self.id,
            display_name=self.full_name,
            skills=[s.model_copy() for s in self.skills],
            issues_resolved=self.contributions.issues_resolved,
            points=self.contributions.points,
            rating=self.rating.model_copy(),
            availability=self.availability,
            last_active=self.last_active,
            department=self.department,
        )


class CandidateHelper(BaseModel):
    """Read-only view of a potential helper, supplied to the ranking engine."""

    model_config = ConfigDict(frozen=True)

    identity: str
    display_name: str = ""
    skills: List[Skill] = []
    issues_resolved: int = 0
    points: int = 0
    rating: Rating = Rating()
    availability: Availability = Availability.AVAILABLE
    last_active: datetime
    department: Optional[str] = None
