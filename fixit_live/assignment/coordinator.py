"""
Assignment Coordinator: the forward-only issue lifecycle and the
ask -> respond -> assign handshake.

States:
  open -> assigned -> in_progress -> resolved -> closed

Behavioral Contract:
- Only forward transitions are legal; anything else raises InvalidTransition
  and leaves the issue untouched
- Every transition is a compare-and-swap on the issue's status in the
  issue store; losing the swap raises RaceLost
- An accepted help response assigns the issue only if the requester still
  owns it and it is not already resolved or closed
- Pending help requests expire and are consumed on first response, so a
  replayed response cannot trigger a second assignment attempt
- Contribution counters are incremented by the user store on request;
  the coordinator never edits profiles itself
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from fixit_live.config import CoordinatorConfig
from fixit_live.errors import (
    AuthorizationDenied,
    DuplicateVote,
    InvalidTransition,
    MalformedPayload,
    NotFound,
    RaceLost,
)
from fixit_live.models.assignment import HelpRequest
from fixit_live.models.issue import (
    TERMINAL_STATUSES,
    Issue,
    IssueStatus,
    Resolution,
    VoteType,
)
from fixit_live.store.issue_store import IssueStore
from fixit_live.store.user_store import UserStore

logger = logging.getLogger(__name__)

VOTE_RETRY_BUDGET = 3
VOTE_LOCK_STRIPES = 64


class HelpRequestLedger:
    """Pending help requests keyed by (requester, target, issue)."""

    def __init__(self, ttl_seconds: Optional[int] = None):
        self._ttl = timedelta(seconds=ttl_seconds) if ttl_seconds else None
        self._lock = threading.Lock()
        self._pending: Dict[Tuple[str, str, str], HelpRequest] = {}

    def record(
        self,
        requester: str,
        target: str,
        issue_id: str,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> HelpRequest:
        """Record an ask. Asking again refreshes the request and its expiry."""
        now = now or datetime.now(timezone.utc)
        request = HelpRequest(
            id=f"help_{uuid4().hex[:12]}",
            requester=requester,
            target=target,
            issue_id=issue_id,
            note=note,
            created_at=now,
            expires_at=now + self._ttl if self._ttl else None,
        )
        with self._lock:
            self._pending[(requester, target, issue_id)] = request
        return request

    def consume(
        self,
        requester: str,
        target: str,
        issue_id: str,
        now: Optional[datetime] = None,
    ) -> Optional[HelpRequest]:
        """Remove and return the matching live request, if any."""
        now = now or datetime.now(timezone.utc)
        with self._lock:
            request = self._pending.pop((requester, target, issue_id), None)
        if request is None or request.is_expired(now):
            return None
        return request

    def pending_for(self, target: str, now: Optional[datetime] = None) -> List[HelpRequest]:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            requests = list(self._pending.values())
        return [r for r in requests if r.target == target and not r.is_expired(now)]

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            expired = [k for k, r in self._pending.items() if r.is_expired(now)]
            for key in expired:
                del self._pending[key]
        return len(expired)


class AssignmentCoordinator:
    """Owns every status transition the live core performs on an issue."""

    def __init__(
        self,
        issue_store: IssueStore,
        user_store: UserStore,
        config: CoordinatorConfig,
    ):
        self.issue_store = issue_store
        self.user_store = user_store
        self.config = config
        self.ledger = HelpRequestLedger(config.help_request_ttl_seconds)
        # Fixed pool; issues sharing a stripe just serialize their votes
        self._vote_locks = [threading.Lock() for _ in range(VOTE_LOCK_STRIPES)]

    # --- Handshake ---

    def ask_help(
        self,
        requester: str,
        target: str,
        issue_id: str,
        note: Optional[str] = None,
    ) -> HelpRequest:
        """Start a handshake. No issue state changes."""
        self.ledger.purge_expired()
        return self.ledger.record(requester, target, issue_id, note)

    def accept_help(self, responder: str, requester_id: str, issue_id: str) -> Issue:
        """
        Assign issue_id to responder after an accepted help response.

        Raises NotFound, AuthorizationDenied, InvalidTransition or RaceLost.
        """
        request = self.ledger.consume(requester_id, responder, issue_id)
        if request is None and self.config.require_pending_ask:
            raise NotFound(
                f"No pending help request from {requester_id} to {responder}",
                issue_id=issue_id,
            )

        issue = self._load(issue_id)
        if issue.posted_by != requester_id:
            raise AuthorizationDenied(
                f"{requester_id} does not own issue {issue_id}",
                issue_id=issue_id,
            )
        if issue.status in TERMINAL_STATUSES:
            raise InvalidTransition(
                f"Issue {issue_id} is already {issue.status.value}",
                issue_id=issue_id,
            )

        updated = self._transition(issue, IssueStatus.ASSIGNED, assigned_to=responder)
        logger.info(
            "Issue %s assigned to %s via accepted help request", issue_id, responder
        )
        return updated

    def decline_help(
        self, responder: str, requester_id: str, issue_id: str
    ) -> Optional[HelpRequest]:
        """Consume the pending ask without touching the issue."""
        request = self.ledger.consume(requester_id, responder, issue_id)
        if request is None:
            logger.info(
                "Decline from %s for issue %s matched no pending help request",
                responder,
                issue_id,
            )
        return request

    # --- Direct lifecycle operations ---

    def assign(self, issue_id: str, owner: str, helper_id: str) -> Issue:
        """Owner-initiated assignment, e.g. picking from ranked suggestions."""
        issue = self._load(issue_id)
        if issue.posted_by != owner:
            raise AuthorizationDenied(
                f"{owner} is not authorized to assign issue {issue_id}",
                issue_id=issue_id,
            )
        helper = self.user_store.find_by_id(helper_id)
        if helper is None or not helper.is_active:
            raise NotFound(f"Helper {helper_id} not found", issue_id=issue_id)

        updated = self._transition(issue, IssueStatus.ASSIGNED, assigned_to=helper_id)
        logger.info("Issue %s assigned to %s by owner", issue_id, helper_id)
        return updated

    def start_progress(self, issue_id: str, helper: str) -> Issue:
        issue = self._load(issue_id)
        if issue.assigned_to != helper:
            raise AuthorizationDenied(
                f"{helper} is not the assigned helper of issue {issue_id}",
                issue_id=issue_id,
            )
        return self._transition(issue, IssueStatus.IN_PROGRESS)

    def resolve(
        self,
        issue_id: str,
        helper: str,
        solution: str,
        time_spent: int = 0,
    ) -> Issue:
        """
        Resolve an issue. Only the currently assigned helper may do this.
        On success the helper's contribution counters are credited.
        """
        if not solution or not solution.strip():
            raise MalformedPayload("Solution is required", issue_id=issue_id)

        issue = self._load(issue_id)
        if issue.assigned_to is None or issue.assigned_to != helper:
            raise AuthorizationDenied(
                f"{helper} is not authorized to resolve issue {issue_id}",
                issue_id=issue_id,
            )

        resolution = Resolution(
            solution=solution.strip(),
            resolved_by=helper,
            resolved_at=datetime.now(timezone.utc),
            time_spent=max(0, time_spent or 0),
        )
        updated = self._transition(issue, IssueStatus.RESOLVED, resolution=resolution)

        credited = self.user_store.record_resolution(
            helper, resolution.time_spent, self.config.points_per_resolution
        )
        if credited is None:
            logger.warning(
                "Issue %s resolved but helper %s has no profile to credit",
                issue_id,
                helper,
            )
        logger.info("Issue %s resolved by %s", issue_id, helper)
        return updated

    def close(self, issue_id: str, owner: str) -> Issue:
        issue = self._load(issue_id)
        if issue.posted_by != owner:
            raise AuthorizationDenied(
                f"{owner} is not authorized to close issue {issue_id}",
                issue_id=issue_id,
            )
        return self._transition(issue, IssueStatus.CLOSED, assigned_to=None)

    # --- Voting ---

    def vote(self, issue_id: str, identity: str, vote_type: VoteType) -> Issue:
        """One vote per identity per issue; a repeat is rejected, not overwritten."""
        with self._vote_lock(issue_id):
            for _ in range(VOTE_RETRY_BUDGET):
                issue = self._load(issue_id)
                if not issue.add_vote(identity, vote_type):
                    raise DuplicateVote(
                        f"{identity} has already voted on issue {issue_id}",
                        issue_id=issue_id,
                    )
                # Same-status swap so a concurrent transition is never overwritten
                updated = self.issue_store.update_status(
                    issue_id,
                    issue.status,
                    issue.status,
                    {"upvotes": issue.upvotes, "downvotes": issue.downvotes},
                )
                if updated is not None:
                    return updated
        raise RaceLost(f"Could not record vote on issue {issue_id}", issue_id=issue_id)

    # --- Internals ---

    def _load(self, issue_id: str) -> Issue:
        issue = self.issue_store.find_by_id(issue_id)
        if issue is None:
            raise NotFound(f"Issue {issue_id} not found", issue_id=issue_id)
        return issue

    def _transition(self, issue: Issue, new_status: IssueStatus, **fields) -> Issue:
        if not issue.status.can_advance_to(new_status):
            raise InvalidTransition(
                f"Cannot move issue {issue.id} from {issue.status.value} "
                f"to {new_status.value}",
                issue_id=issue.id,
            )
        updated = self.issue_store.update_status(
            issue.id, issue.status, new_status, fields
        )
        if updated is None:
            raise RaceLost(
                f"Issue {issue.id} changed status concurrently",
                issue_id=issue.id,
            )
        return updated

    def _vote_lock(self, issue_id: str) -> threading.Lock:
        return self._vote_locks[hash(issue_id) % VOTE_LOCK_STRIPES]
