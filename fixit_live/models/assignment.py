"""Help handshake records and assignment outcomes."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class HelpRequest(BaseModel):
    """A pending ask-for-help, held in memory until answered or expired."""

    id: str
    requester: str                          # Issue owner asking for help
    target: str                             # Helper being asked
    issue_id: str
    note: Optional[str] = None
    created_at: datetime
    expires_at: Optional[datetime] = None   # None = never expires

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class AssignmentOutcome(BaseModel):
    """Result of one accepted-handshake assignment attempt."""

    issue_id: str
    responder: str
    requester: str
    success: bool
    reason: Optional[str] = None            # Error code when success is False
    detail: Optional[str] = None
    completed_at: datetime
