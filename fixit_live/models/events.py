"""Event catalogue: the closed set of live events and their payload shapes."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from fixit_live.models.user import Availability


class InboundEvent(str, Enum):
    """Events a connected client may emit."""

    ISSUE_UPDATE = "issue:update"
    COMMENT_ADD = "comment:add"
    ISSUE_ASSIGN = "issue:assign"
    ISSUE_RESOLVE = "issue:resolve"
    AVAILABILITY_UPDATE = "availability:update"
    MESSAGE_SEND = "message:send"
    HELP_ASK = "help:ask"
    HELP_RESPOND = "help:respond"
    TYPING_START = "typing:start"
    TYPING_STOP = "typing:stop"
    ISSUE_WATCH = "issue:watch"
    ISSUE_UNWATCH = "issue:unwatch"
    DISCONNECT = "disconnect"


class OutboundEvent(str, Enum):
    """Events the server delivers to clients."""

    ISSUE_UPDATED = "issue:updated"
    COMMENT_ADDED = "comment:added"
    ISSUE_ASSIGNED = "issue:assigned"
    ISSUE_RESOLVED = "issue:resolved"
    AVAILABILITY_CHANGED = "availability:changed"
    MESSAGE_RECEIVED = "message:received"
    MESSAGE_SENT = "message:sent"
    HELP_REQUEST = "help:request"
    HELP_ASKED = "help:asked"
    HELP_RESPONSE = "help:response"
    HELP_RESPONDED = "help:responded"
    TYPING_STARTED = "typing:started"
    TYPING_STOPPED = "typing:stopped"
    ISSUE_WATCHING = "issue:watching"
    ISSUE_UNWATCHED = "issue:unwatched"


class EventFrame(BaseModel):
    """One JSON frame on the wire: {"event": ..., "data": {...}}."""

    event: str = Field(min_length=1)
    data: dict = {}


class WirePayload(BaseModel):
    """Inbound payloads use camelCase keys on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class IssueUpdatePayload(WirePayload):
    issue_id: str = Field(min_length=1)
    updates: dict


class CommentAddPayload(WirePayload):
    issue_id: str = Field(min_length=1)
    comment: dict


class IssueAssignPayload(WirePayload):
    issue_id: str = Field(min_length=1)
    assigned_to: str = Field(min_length=1)


class IssueResolvePayload(WirePayload):
    issue_id: str = Field(min_length=1)
    resolution: dict


class AvailabilityUpdatePayload(WirePayload):
    availability: Availability


class MessageSendPayload(WirePayload):
    recipient_id: str = Field(min_length=1)
    message: str
    issue_id: Optional[str] = None


class HelpAskPayload(WirePayload):
    recipient_id: str = Field(min_length=1)
    issue_id: str = Field(min_length=1)
    note: Optional[str] = None


class HelpRespondPayload(WirePayload):
    to_user_id: str = Field(min_length=1)    # Requester (issue owner)
    issue_id: str = Field(min_length=1)
    accepted: bool
    note: Optional[str] = None


class TypingPayload(WirePayload):
    recipient_id: str = Field(min_length=1)


class IssueWatchPayload(WirePayload):
    issue_id: str = Field(min_length=1)


class DisconnectPayload(WirePayload):
    pass


PAYLOAD_MODELS = {
    InboundEvent.ISSUE_UPDATE: IssueUpdatePayload,
    InboundEvent.COMMENT_ADD: CommentAddPayload,
    InboundEvent.ISSUE_ASSIGN: IssueAssignPayload,
    InboundEvent.ISSUE_RESOLVE: IssueResolvePayload,
    InboundEvent.AVAILABILITY_UPDATE: AvailabilityUpdatePayload,
    InboundEvent.MESSAGE_SEND: MessageSendPayload,
    InboundEvent.HELP_ASK: HelpAskPayload,
    InboundEvent.HELP_RESPOND: HelpRespondPayload,
    InboundEvent.TYPING_START: TypingPayload,
    InboundEvent.TYPING_STOP: TypingPayload,
    InboundEvent.ISSUE_WATCH: IssueWatchPayload,
    InboundEvent.ISSUE_UNWATCH: IssueWatchPayload,
    InboundEvent.DISCONNECT: DisconnectPayload,
}
