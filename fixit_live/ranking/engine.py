"""
Helper Ranking Engine: deterministic ordering of candidate helpers.

Pure functions only: no I/O, no caching, inputs are never mutated. The
caller fetches candidates from the identity store and supplies everything
the score depends on, including the reference time.

Score composition:
  base  = 0.35 * skill + 0.30 * history + 0.20 * domain + 0.15 * engagement
  final = base * priority multiplier            (range [0, 1.2])
"""

import re
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

from pydantic import BaseModel

from fixit_live.models.user import Availability, CandidateHelper

SKILL_WEIGHT = 0.35
HISTORY_WEIGHT = 0.30
DOMAIN_WEIGHT = 0.20
ENGAGEMENT_WEIGHT = 0.15

RECENCY_WINDOW_DAYS = 30.0
NO_KEYWORD_DOMAIN_SCORE = 0.2

AVAILABILITY_SCORES: Dict[Availability, float] = {
    Availability.AVAILABLE: 1.0,
    Availability.BUSY: 0.5,
    Availability.UNAVAILABLE: 0.0,
}

PRIORITY_MULTIPLIERS: Dict[str, float] = {
    "urgent": 1.2,
    "high": 1.1,
    "medium": 1.0,
    "low": 0.95,
}

# Issue category -> department keywords that signal domain familiarity
CATEGORY_DEPARTMENT_KEYWORDS: Dict[str, FrozenSet[str]] = {
    "hardware": frozenset({"it", "infrastructure", "helpdesk", "support"}),
    "software": frozenset({"it", "engineering", "development", "software"}),
    "network": frozenset({"it", "infrastructure", "network", "networking", "operations"}),
    "printer": frozenset({"it", "helpdesk", "support", "facilities"}),
    "email": frozenset({"it", "helpdesk", "support", "messaging"}),
    "access": frozenset({"it", "security", "identity", "operations"}),
    "other": frozenset(),
}


class RankingError(ValueError):
    """Raised when a ranking request cannot produce a defined score."""


class ScoreBreakdown(BaseModel):
    skill: float
    history: float
    domain: float
    engagement: float
    base: float
    multiplier: float


class RankedHelper(BaseModel):
    candidate: CandidateHelper
    score: float
    breakdown: ScoreBreakdown


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _normalize_skills(skills: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for skill in skills:
        key = skill.strip().lower()
        if key and key not in seen:
            seen.append(key)
    return seen


def skill_score(candidate: CandidateHelper, required_skills: Sequence[str]) -> float:
    """Share of required skills the candidate holds (case-insensitive)."""
    required = _normalize_skills(required_skills)
    if not required:
        raise RankingError("required_skills must contain at least one skill")
    held = {s.name.strip().lower() for s in candidate.skills}
    matched = sum(1 for skill in required if skill in held)
    return matched / len(required)


def history_score(candidate: CandidateHelper) -> float:
    points = _clamp(candidate.points / 100.0)
    resolved = _clamp(candidate.issues_resolved / 10.0)
    rating = _clamp(candidate.rating.average / 5.0)
    return 0.4 * points + 0.3 * resolved + 0.3 * rating


def engagement_score(candidate: CandidateHelper, now: datetime) -> float:
    last_active = candidate.last_active
    if last_active.tzinfo is None:
        last_active = last_active.replace(tzinfo=timezone.utc)
    days_idle = (now - last_active).total_seconds() / 86400.0
    recency = _clamp(1.0 - days_idle / RECENCY_WINDOW_DAYS)
    availability = AVAILABILITY_SCORES.get(candidate.availability, 0.0)
    return (recency + availability) / 2.0


def domain_score(candidate: CandidateHelper, category: Optional[str]) -> float:
    """
    1.0 when a word of the candidate's department is a keyword for the
    category, NO_KEYWORD_DOMAIN_SCORE when the category has no keywords.
    """
    keywords = CATEGORY_DEPARTMENT_KEYWORDS.get(_enum_value(category), frozenset())
    if not keywords:
        return NO_KEYWORD_DOMAIN_SCORE
    if not candidate.department:
        return 0.0
    words = set(re.findall(r"[a-z0-9]+", candidate.department.lower()))
    return 1.0 if words & keywords else 0.0


def priority_multiplier(priority: Optional[str]) -> float:
    return PRIORITY_MULTIPLIERS.get(_enum_value(priority), 1.0)


def _enum_value(value) -> str:
    if value is None:
        return ""
    return str(getattr(value, "value", value)).lower()


def score_candidate(
    candidate: CandidateHelper,
    required_skills: Sequence[str],
    category: Optional[str],
    priority: Optional[str],
    now: datetime,
) -> RankedHelper:
    skill = skill_score(candidate, required_skills)
    history = history_score(candidate)
    domain = domain_score(candidate, category)
    engagement = engagement_score(candidate, now)
    base = (
        SKILL_WEIGHT * skill
        + HISTORY_WEIGHT * history
        + DOMAIN_WEIGHT * domain
        + ENGAGEMENT_WEIGHT * engagement
    )
    multiplier = priority_multiplier(priority)
    return RankedHelper(
        candidate=candidate,
        score=base * multiplier,
        breakdown=ScoreBreakdown(
            skill=skill,
            history=history,
            domain=domain,
            engagement=engagement,
            base=base,
            multiplier=multiplier,
        ),
    )


def rank(
    candidates: Sequence[CandidateHelper],
    required_skills: Sequence[str],
    category: Optional[str] = None,
    priority: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[RankedHelper]:
    """
    Score every candidate and return them by score, highest first.
    Ties keep input order.
    """
    if not _normalize_skills(required_skills):
        raise RankingError("required_skills must contain at least one skill")
    if now is None:
        now = datetime.now(timezone.utc)

    scored = [
        score_candidate(c, required_skills, category, priority, now)
        for c in candidates
    ]
    return sorted(scored, key=lambda r: r.score, reverse=True)


def top_helpers(ranked: Sequence[RankedHelper], limit: int) -> List[RankedHelper]:
    return list(ranked[:limit])


def suggest_helpers(
    candidates: Sequence[CandidateHelper],
    required_skills: Sequence[str],
    category: Optional[str] = None,
    priority: Optional[str] = None,
    limit: int = 10,
    now: Optional[datetime] = None,
) -> List[RankedHelper]:
    """Rank, then keep the best `limit` helpers."""
    return top_helpers(rank(candidates, required_skills, category, priority, now), limit)
