"""
Coordination error taxonomy.

Every failure the coordination core can signal is a CoordinationError.
None of them is fatal to the process: the live layer absorbs them at the
dispatch boundary, the HTTP layer maps them to status codes.
"""

from typing import Optional


class CoordinationError(Exception):
    """Base class for all coordination-layer failures."""

    code = "coordination_error"

    def __init__(self, message: str, *, issue_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.issue_id = issue_id

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "detail": self.message,
            "issue_id": self.issue_id,
        }


class AuthFailure(CoordinationError):
    """Bad, missing or expired credential at connect time."""

    code = "auth_failure"


class NotFound(CoordinationError):
    """A referenced issue, identity or help request does not exist."""

    code = "not_found"


class AuthorizationDenied(CoordinationError):
    """The actor lacks rights for the requested mutation."""

    code = "authorization_denied"


class InvalidTransition(CoordinationError):
    """The requested issue status move is not a forward transition."""

    code = "invalid_transition"


class RaceLost(CoordinationError):
    """A concurrent writer changed the issue status first."""

    code = "race_lost"


class DuplicateVote(CoordinationError):
    """The identity has already voted on this issue."""

    code = "duplicate_vote"


class MalformedPayload(CoordinationError):
    """An inbound event payload is missing keys or has the wrong shape."""

    code = "malformed_payload"
