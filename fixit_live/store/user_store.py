"""
User Store: read/write contract against the identity store.

The coordination core only ever sees UserProfile records, which carry no
secret fields. Contribution counters are incremented here on request;
the coordinator never edits them itself.
"""

import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol

from fixit_live.models.user import Availability, CandidateHelper, UserProfile


class UserStore(Protocol):
    def find_by_id(self, user_id: str) -> Optional[UserProfile]: ...

    def update_last_active(self, user_id: str, timestamp: datetime) -> None: ...

    def set_availability(self, user_id: str, availability: Availability) -> None: ...

    def record_resolution(
        self, user_id: str, time_spent: int, points: int
    ) -> Optional[UserProfile]: ...

    def find_candidates(
        self, required_skills: Iterable[str], exclude: Iterable[str] = ()
    ) -> List[CandidateHelper]: ...


class InMemoryUserStore:
    """In-memory identity store for the prototype and tests."""

    def __init__(self, profiles: Optional[Iterable[UserProfile]] = None):
        self._lock = threading.Lock()
        self._users: Dict[str, UserProfile] = {}
        for profile in profiles or []:
            self.upsert(profile)

    def upsert(self, profile: UserProfile) -> None:
        with self._lock:
            self._users[profile.id] = profile.model_copy(deep=True)

    def find_by_id(self, user_id: str) -> Optional[UserProfile]:
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy(deep=True) if user else None

    def update_last_active(self, user_id: str, timestamp: datetime) -> None:
        with self._lock:
            user = self._users.get(user_id)
            if user:
                user.last_active = timestamp

    def set_availability(self, user_id: str, availability: Availability) -> None:
        with self._lock:
            user = self._users.get(user_id)
            if user:
                user.availability = availability

    def record_resolution(
        self, user_id: str, time_spent: int, points: int
    ) -> Optional[UserProfile]:
        """Credit a resolver: one more issue resolved, time helped, points."""
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            user.contributions.issues_resolved += 1
            user.contributions.total_time_helped += max(0, time_spent)
            user.contributions.points += points
            return user.model_copy(deep=True)

    def find_candidates(
        self, required_skills: Iterable[str], exclude: Iterable[str] = ()
    ) -> List[CandidateHelper]:
        """
        Active users holding at least one skill whose name contains a
        required skill (case-insensitive), in insertion order.
        """
        needles = [s.strip().lower() for s in required_skills if s.strip()]
        excluded = set(exclude)
        with self._lock:
            users = list(self._users.values())

        candidates = []
        for user in users:
            if not user.is_active or user.id in excluded:
                continue
            names = [s.name.lower() for s in user.skills]
            if any(needle in name for needle in needles for name in names):
                candidates.append(user.to_candidate())
        return candidates
