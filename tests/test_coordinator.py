"""Tests for the Assignment Coordinator and the help request ledger."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from fixit_live.assignment.coordinator import (
    VOTE_LOCK_STRIPES,
    AssignmentCoordinator,
    HelpRequestLedger,
)
from fixit_live.config import CoordinatorConfig
from fixit_live.errors import (
    AuthorizationDenied,
    CoordinationError,
    DuplicateVote,
    InvalidTransition,
    MalformedPayload,
    NotFound,
    RaceLost,
)
from fixit_live.models.issue import Issue, IssueStatus, VoteType
from fixit_live.models.user import Skill, UserProfile
from fixit_live.store.issue_store import InMemoryIssueStore, SqliteIssueStore
from fixit_live.store.user_store import InMemoryUserStore


def _make_profile(user_id: str, **overrides) -> UserProfile:
    data = {
        "id": user_id,
        "external_id": f"EMP_{user_id}",
        "first_name": user_id.title(),
        "last_name": "Tester",
        "department": "IT Support",
        "skills": [Skill(name="network")],
        "last_active": datetime.now(timezone.utc),
    }
    data.update(overrides)
    return UserProfile(**data)


def _make_issue(issue_id: str = "issue_1", **overrides) -> Issue:
    data = {
        "id": issue_id,
        "title": "Cannot reach the file server",
        "posted_by": "owner",
        "required_skills": ["network"],
    }
    data.update(overrides)
    return Issue(**data)


def _make_coordinator(issue_store=None, **config_overrides):
    config = CoordinatorConfig(jwt_secret="test-secret-value", **config_overrides)
    issues = issue_store or InMemoryIssueStore()
    users = InMemoryUserStore(
        [_make_profile("owner"), _make_profile("helper"), _make_profile("other")]
    )
    return AssignmentCoordinator(issues, users, config), issues, users


class TestHelpRequestLedger:
    def test_consume_is_single_use(self):
        ledger = HelpRequestLedger(ttl_seconds=60)
        ledger.record("owner", "helper", "issue_1")

        assert ledger.consume("owner", "helper", "issue_1") is not None
        assert ledger.consume("owner", "helper", "issue_1") is None

    def test_expired_request_not_consumable(self):
        ledger = HelpRequestLedger(ttl_seconds=60)
        past = datetime.now(timezone.utc) - timedelta(minutes=5)
        ledger.record("owner", "helper", "issue_1", now=past)

        assert ledger.consume("owner", "helper", "issue_1") is None

    def test_no_ttl_never_expires(self):
        ledger = HelpRequestLedger(ttl_seconds=None)
        request = ledger.record("owner", "helper", "issue_1")
        assert request.expires_at is None
        later = datetime.now(timezone.utc) + timedelta(days=365)
        assert ledger.consume("owner", "helper", "issue_1", now=later) is not None

    def test_pending_for_and_purge(self):
        ledger = HelpRequestLedger(ttl_seconds=60)
        past = datetime.now(timezone.utc) - timedelta(minutes=5)
        ledger.record("owner", "helper", "old", now=past)
        ledger.record("owner", "helper", "fresh")
        ledger.record("owner", "other", "fresh")

        assert [r.issue_id for r in ledger.pending_for("helper")] == ["fresh"]
        assert ledger.purge_expired() == 1


class TestLifecycle:
    def setup_method(self):
        self.coordinator, self.issues, self.users = _make_coordinator()
        self.issues.save(_make_issue())

    def test_full_forward_path(self):
        self.coordinator.assign("issue_1", "owner", "helper")
        self.coordinator.start_progress("issue_1", "helper")
        resolved = self.coordinator.resolve("issue_1", "helper", "Reset the switch port", 30)
        closed = self.coordinator.close("issue_1", "owner")

        assert resolved.resolution.resolved_by == "helper"
        assert resolved.resolution.time_spent == 30
        assert closed.status == IssueStatus.CLOSED
        assert closed.assigned_to is None

    def test_resolve_credits_helper(self):
        self.coordinator.assign("issue_1", "owner", "helper")
        self.coordinator.resolve("issue_1", "helper", "Replaced cable", 45)

        helper = self.users.find_by_id("helper")
        assert helper.contributions.issues_resolved == 1
        assert helper.contributions.total_time_helped == 45
        assert helper.contributions.points == 10

    def test_backward_transition_rejected(self):
        self.coordinator.assign("issue_1", "owner", "helper")
        self.coordinator.resolve("issue_1", "helper", "Done")

        with pytest.raises(InvalidTransition):
            self.coordinator.assign("issue_1", "owner", "other")
        issue = self.issues.find_by_id("issue_1")
        assert issue.status == IssueStatus.RESOLVED
        assert issue.assigned_to == "helper"

    def test_only_owner_assigns(self):
        with pytest.raises(AuthorizationDenied):
            self.coordinator.assign("issue_1", "other", "helper")

    def test_assign_unknown_helper(self):
        with pytest.raises(NotFound):
            self.coordinator.assign("issue_1", "owner", "ghost")

    def test_only_assigned_helper_resolves(self):
        self.coordinator.assign("issue_1", "owner", "helper")
        with pytest.raises(AuthorizationDenied):
            self.coordinator.resolve("issue_1", "other", "Not mine")

    def test_resolve_unassigned_issue_rejected(self):
        with pytest.raises(AuthorizationDenied):
            self.coordinator.resolve("issue_1", "helper", "Fixed")

    def test_empty_solution_rejected(self):
        self.coordinator.assign("issue_1", "owner", "helper")
        with pytest.raises(MalformedPayload):
            self.coordinator.resolve("issue_1", "helper", "   ")

    def test_only_owner_closes(self):
        with pytest.raises(AuthorizationDenied):
            self.coordinator.close("issue_1", "helper")

    def test_missing_issue(self):
        with pytest.raises(NotFound):
            self.coordinator.start_progress("nope", "helper")


class TestHandshake:
    def setup_method(self):
        self.coordinator, self.issues, self.users = _make_coordinator()
        self.issues.save(_make_issue())

    def test_accept_after_ask_assigns(self):
        self.coordinator.ask_help("owner", "helper", "issue_1")
        issue = self.coordinator.accept_help("helper", "owner", "issue_1")

        assert issue.status == IssueStatus.ASSIGNED
        assert issue.assigned_to == "helper"

    def test_accept_without_ask_rejected(self):
        with pytest.raises(NotFound):
            self.coordinator.accept_help("helper", "owner", "issue_1")
        assert self.issues.find_by_id("issue_1").status == IssueStatus.OPEN

    def test_accept_without_ask_allowed_when_configured(self):
        coordinator, issues, _ = _make_coordinator(require_pending_ask=False)
        issues.save(_make_issue())
        assert coordinator.accept_help("helper", "owner", "issue_1").assigned_to == "helper"

    def test_replayed_accept_rejected(self):
        self.coordinator.ask_help("owner", "helper", "issue_1")
        self.coordinator.accept_help("helper", "owner", "issue_1")

        with pytest.raises(NotFound):
            self.coordinator.accept_help("helper", "owner", "issue_1")

    def test_decline_consumes_pending_ask(self):
        self.coordinator.ask_help("owner", "helper", "issue_1")

        assert self.coordinator.decline_help("helper", "owner", "issue_1") is not None
        assert self.coordinator.ledger.pending_for("helper") == []
        with pytest.raises(NotFound):
            self.coordinator.accept_help("helper", "owner", "issue_1")
        assert self.issues.find_by_id("issue_1").status == IssueStatus.OPEN

    def test_decline_without_ask_is_noop(self):
        assert self.coordinator.decline_help("helper", "owner", "issue_1") is None

    def test_requester_must_own_issue(self):
        self.coordinator.ask_help("other", "helper", "issue_1")
        with pytest.raises(AuthorizationDenied):
            self.coordinator.accept_help("helper", "other", "issue_1")

    def test_accept_on_resolved_issue_rejected(self):
        self.coordinator.assign("issue_1", "owner", "other")
        self.coordinator.resolve("issue_1", "other", "Already fixed")
        self.coordinator.ask_help("owner", "helper", "issue_1")

        with pytest.raises(InvalidTransition):
            self.coordinator.accept_help("helper", "owner", "issue_1")
        assert self.issues.find_by_id("issue_1").assigned_to == "other"

    def test_accept_on_missing_issue(self):
        self.coordinator.ask_help("owner", "helper", "ghost")
        with pytest.raises(NotFound):
            self.coordinator.accept_help("helper", "owner", "ghost")


@pytest.mark.parametrize("store_factory", [InMemoryIssueStore, SqliteIssueStore])
def test_concurrent_acceptances_single_winner(store_factory):
    coordinator, issues, _ = _make_coordinator(issue_store=store_factory())
    issues.save(_make_issue())
    coordinator.ask_help("owner", "helper", "issue_1")
    coordinator.ask_help("owner", "other", "issue_1")
    barrier = threading.Barrier(2)

    def accept(responder: str):
        barrier.wait()
        try:
            return coordinator.accept_help(responder, "owner", "issue_1")
        except CoordinationError as e:
            return e

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(accept, ["helper", "other"]))

    winners = [r for r in results if isinstance(r, Issue)]
    losers = [r for r in results if isinstance(r, CoordinationError)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], (RaceLost, InvalidTransition))
    assert issues.find_by_id("issue_1").assigned_to == winners[0].assigned_to


class TestVoting:
    def setup_method(self):
        self.coordinator, self.issues, _ = _make_coordinator()
        self.issues.save(_make_issue())

    def test_vote_locks_do_not_grow_with_issues(self):
        for i in range(VOTE_LOCK_STRIPES * 3):
            self.issues.save(_make_issue(f"issue_{i}_extra"))
            self.coordinator.vote(f"issue_{i}_extra", "a", VoteType.UPVOTE)

        assert len(self.coordinator._vote_locks) == VOTE_LOCK_STRIPES
        assert self.coordinator._vote_lock("issue_1") is self.coordinator._vote_lock("issue_1")

    def test_votes_tallied(self):
        self.coordinator.vote("issue_1", "a", VoteType.UPVOTE)
        self.coordinator.vote("issue_1", "b", VoteType.UPVOTE)
        issue = self.coordinator.vote("issue_1", "c", VoteType.DOWNVOTE)
        assert issue.vote_count == 1

    def test_second_vote_rejected(self):
        self.coordinator.vote("issue_1", "a", VoteType.UPVOTE)
        with pytest.raises(DuplicateVote):
            self.coordinator.vote("issue_1", "a", VoteType.DOWNVOTE)
        issue = self.issues.find_by_id("issue_1")
        assert issue.upvotes == ["a"]
        assert issue.downvotes == []

    def test_vote_preserves_status(self):
        self.coordinator.assign("issue_1", "owner", "helper")
        issue = self.coordinator.vote("issue_1", "a", VoteType.UPVOTE)
        assert issue.status == IssueStatus.ASSIGNED
        assert issue.assigned_to == "helper"

    def test_concurrent_votes_all_recorded(self):
        voters = [f"voter_{i}" for i in range(20)]
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda v: self.coordinator.vote("issue_1", v, VoteType.UPVOTE), voters))
        assert sorted(self.issues.find_by_id("issue_1").upvotes) == sorted(voters)
