"""
Event Dispatch: one table from inbound event kind to handler.

Behavioral Contract:
- Only events in the InboundEvent catalogue are handled; unknown names and
  payloads that fail validation are dropped with no outbound effect
- Every outbound payload is stamped with the acting identity's public
  profile and a server timestamp
- An accepted help response runs as a tracked asyncio task; its
  AssignmentOutcome is recorded and failures are logged, never raised
- No handler failure propagates to the connection loop
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Set

from pydantic import BaseModel, ValidationError

from fixit_live.assignment.coordinator import AssignmentCoordinator
from fixit_live.errors import CoordinationError
from fixit_live.models.assignment import AssignmentOutcome
from fixit_live.models.events import (
    PAYLOAD_MODELS,
    AvailabilityUpdatePayload,
    CommentAddPayload,
    HelpAskPayload,
    HelpRespondPayload,
    InboundEvent,
    IssueAssignPayload,
    IssueResolvePayload,
    IssueUpdatePayload,
    IssueWatchPayload,
    MessageSendPayload,
    OutboundEvent,
    TypingPayload,
)
from fixit_live.models.user import Actor
from fixit_live.presence.registry import Connection
from fixit_live.rooms.router import (
    RoomRouter,
    department_topic,
    issue_topic,
    user_topic,
)
from fixit_live.store.user_store import UserStore

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, BaseModel], Awaitable[None]]


def stamp(actor: Actor, now: Optional[datetime] = None, **fields) -> dict:
    """Build an outbound payload: domain fields + actor + server timestamp."""
    now = now or datetime.now(timezone.utc)
    payload = dict(fields)
    payload["actor"] = actor.model_dump(by_alias=True)
    payload["timestamp"] = now.isoformat()
    return payload


class EventDispatcher:
    """Routes validated inbound events to topics via the RoomRouter."""

    def __init__(
        self,
        router: RoomRouter,
        coordinator: AssignmentCoordinator,
        user_store: UserStore,
        on_disconnect: Optional[Callable[[Connection], Awaitable[None]]] = None,
        outcome_history: int = 100,
    ):
        self.router = router
        self.coordinator = coordinator
        self.user_store = user_store
        self.on_disconnect = on_disconnect
        self._pending: Set[asyncio.Task] = set()
        self._outcomes: Deque[AssignmentOutcome] = deque(maxlen=outcome_history)

        self._handlers: Dict[InboundEvent, Handler] = {
            InboundEvent.ISSUE_UPDATE: self._on_issue_update,
            InboundEvent.COMMENT_ADD: self._on_comment_add,
            InboundEvent.ISSUE_ASSIGN: self._on_issue_assign,
            InboundEvent.ISSUE_RESOLVE: self._on_issue_resolve,
            InboundEvent.AVAILABILITY_UPDATE: self._on_availability_update,
            InboundEvent.MESSAGE_SEND: self._on_message_send,
            InboundEvent.HELP_ASK: self._on_help_ask,
            InboundEvent.HELP_RESPOND: self._on_help_respond,
            InboundEvent.TYPING_START: self._on_typing_start,
            InboundEvent.TYPING_STOP: self._on_typing_stop,
            InboundEvent.ISSUE_WATCH: self._on_issue_watch,
            InboundEvent.ISSUE_UNWATCH: self._on_issue_unwatch,
            InboundEvent.DISCONNECT: self._on_disconnect,
        }
        missing = [e.value for e in InboundEvent if e not in self._handlers]
        if missing:
            raise RuntimeError(f"No handler registered for: {', '.join(missing)}")

    @property
    def acceptance_outcomes(self) -> List[AssignmentOutcome]:
        return list(self._outcomes)

    @property
    def pending_acceptances(self) -> int:
        return len(self._pending)

    async def dispatch(self, connection: Connection, event: str, data) -> bool:
        """Handle one inbound event. Returns False if it was dropped."""
        try:
            kind = InboundEvent(event)
        except ValueError:
            logger.warning("Dropped unknown event %r from %s", event, connection.identity)
            return False

        try:
            payload = PAYLOAD_MODELS[kind].model_validate(data if data is not None else {})
        except ValidationError as e:
            logger.warning(
                "Dropped malformed %s from %s: %d validation error(s)",
                kind.value,
                connection.identity,
                e.error_count(),
            )
            return False

        try:
            await self._handlers[kind](connection, payload)
        except CoordinationError as e:
            logger.warning("%s from %s rejected: %s", kind.value, connection.identity, e)
            return False
        except Exception:
            logger.exception("Handler for %s failed", kind.value)
            return False
        return True

    async def drain(self) -> List[AssignmentOutcome]:
        """Wait for every in-flight acceptance and return their outcomes."""
        results: List[AssignmentOutcome] = []
        while self._pending:
            batch = list(self._pending)
            self._pending.difference_update(batch)
            done = await asyncio.gather(*batch, return_exceptions=True)
            results.extend(r for r in done if isinstance(r, AssignmentOutcome))
        return results

    # --- Department / issue broadcasts ---

    async def _on_issue_update(self, conn: Connection, p: IssueUpdatePayload) -> None:
        if not conn.profile.department:
            return
        await self.router.broadcast(
            department_topic(conn.profile.department),
            OutboundEvent.ISSUE_UPDATED.value,
            stamp(conn.profile.to_actor(), issueId=p.issue_id, updates=p.updates),
            exclude=conn,
        )

    async def _on_comment_add(self, conn: Connection, p: CommentAddPayload) -> None:
        actor = conn.profile.to_actor()
        comment = dict(p.comment)
        comment["user"] = actor.model_dump(by_alias=True)
        await self.router.broadcast(
            issue_topic(p.issue_id),
            OutboundEvent.COMMENT_ADDED.value,
            stamp(actor, issueId=p.issue_id, comment=comment),
        )

    async def _on_issue_resolve(self, conn: Connection, p: IssueResolvePayload) -> None:
        if not conn.profile.department:
            return
        await self.router.broadcast(
            department_topic(conn.profile.department),
            OutboundEvent.ISSUE_RESOLVED.value,
            stamp(conn.profile.to_actor(), issueId=p.issue_id, resolution=p.resolution),
            exclude=conn,
        )

    async def _on_availability_update(
        self, conn: Connection, p: AvailabilityUpdatePayload
    ) -> None:
        self.user_store.set_availability(conn.identity, p.availability)
        conn.profile.availability = p.availability
        if not conn.profile.department:
            return
        await self.router.broadcast(
            department_topic(conn.profile.department),
            OutboundEvent.AVAILABILITY_CHANGED.value,
            stamp(
                conn.profile.to_actor(),
                userId=conn.identity,
                availability=p.availability.value,
            ),
            exclude=conn,
        )

    # --- Direct messages ---

    async def _on_issue_assign(self, conn: Connection, p: IssueAssignPayload) -> None:
        await self.router.broadcast(
            user_topic(p.assigned_to),
            OutboundEvent.ISSUE_ASSIGNED.value,
            stamp(conn.profile.to_actor(), issueId=p.issue_id, assignedTo=p.assigned_to),
        )

    async def _on_message_send(self, conn: Connection, p: MessageSendPayload) -> None:
        actor = conn.profile.to_actor()
        now = datetime.now(timezone.utc)
        await self.router.broadcast(
            user_topic(p.recipient_id),
            OutboundEvent.MESSAGE_RECEIVED.value,
            stamp(actor, now, message=p.message, issueId=p.issue_id),
        )
        await self.router.send(
            conn,
            OutboundEvent.MESSAGE_SENT.value,
            stamp(actor, now, recipientId=p.recipient_id, message=p.message, issueId=p.issue_id),
        )

    async def _on_typing_start(self, conn: Connection, p: TypingPayload) -> None:
        await self.router.broadcast(
            user_topic(p.recipient_id),
            OutboundEvent.TYPING_STARTED.value,
            stamp(conn.profile.to_actor(), userId=conn.identity),
        )

    async def _on_typing_stop(self, conn: Connection, p: TypingPayload) -> None:
        await self.router.broadcast(
            user_topic(p.recipient_id),
            OutboundEvent.TYPING_STOPPED.value,
            stamp(conn.profile.to_actor(), userId=conn.identity),
        )

    # --- Issue topic membership ---

    async def _on_issue_watch(self, conn: Connection, p: IssueWatchPayload) -> None:
        self.router.join(conn, issue_topic(p.issue_id))
        await self.router.send(
            conn,
            OutboundEvent.ISSUE_WATCHING.value,
            stamp(conn.profile.to_actor(), issueId=p.issue_id),
        )

    async def _on_issue_unwatch(self, conn: Connection, p: IssueWatchPayload) -> None:
        self.router.leave(conn, issue_topic(p.issue_id))
        await self.router.send(
            conn,
            OutboundEvent.ISSUE_UNWATCHED.value,
            stamp(conn.profile.to_actor(), issueId=p.issue_id),
        )

    async def _on_disconnect(self, conn: Connection, p: BaseModel) -> None:
        if self.on_disconnect is not None:
            await self.on_disconnect(conn)

    # --- Help handshake ---

    async def _on_help_ask(self, conn: Connection, p: HelpAskPayload) -> None:
        actor = conn.profile.to_actor()
        request = self.coordinator.ask_help(conn.identity, p.recipient_id, p.issue_id, p.note)
        now = request.created_at
        await self.router.broadcast(
            user_topic(p.recipient_id),
            OutboundEvent.HELP_REQUEST.value,
            stamp(
                actor,
                now,
                requestId=request.id,
                issueId=p.issue_id,
                note=p.note,
                expiresAt=request.expires_at.isoformat() if request.expires_at else None,
            ),
        )
        await self.router.send(
            conn,
            OutboundEvent.HELP_ASKED.value,
            stamp(actor, now, requestId=request.id, recipientId=p.recipient_id, issueId=p.issue_id),
        )

    async def _on_help_respond(self, conn: Connection, p: HelpRespondPayload) -> None:
        actor = conn.profile.to_actor()
        now = datetime.now(timezone.utc)
        await self.router.broadcast(
            user_topic(p.to_user_id),
            OutboundEvent.HELP_RESPONSE.value,
            stamp(actor, now, issueId=p.issue_id, accepted=p.accepted, note=p.note),
        )
        await self.router.send(
            conn,
            OutboundEvent.HELP_RESPONDED.value,
            stamp(actor, now, toUserId=p.to_user_id, issueId=p.issue_id, accepted=p.accepted),
        )
        if p.accepted:
            self.submit_acceptance(actor, p.to_user_id, p.issue_id)
        else:
            self.coordinator.decline_help(conn.identity, p.to_user_id, p.issue_id)

    def submit_acceptance(
        self, responder: Actor, requester_id: str, issue_id: str
    ) -> "asyncio.Task[AssignmentOutcome]":
        """Schedule the assignment write as a tracked task."""
        task = asyncio.get_running_loop().create_task(
            self._run_acceptance(responder, requester_id, issue_id)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _run_acceptance(
        self, responder: Actor, requester_id: str, issue_id: str
    ) -> AssignmentOutcome:
        try:
            await asyncio.to_thread(
                self.coordinator.accept_help, responder.id, requester_id, issue_id
            )
        except CoordinationError as e:
            logger.warning(
                "Help acceptance for issue %s by %s failed (%s): %s",
                issue_id,
                responder.id,
                e.code,
                e.message,
            )
            outcome = self._outcome(responder, requester_id, issue_id, False, e.code, e.message)
        except Exception as e:
            logger.exception("Help acceptance for issue %s crashed", issue_id)
            outcome = self._outcome(
                responder, requester_id, issue_id, False, "internal_error", str(e)
            )
        else:
            outcome = self._outcome(responder, requester_id, issue_id, True)
            payload = stamp(
                responder,
                outcome.completed_at,
                issueId=issue_id,
                assignedTo=responder.id,
                assignedBy={"id": requester_id},
            )
            topics = {user_topic(responder.id), user_topic(requester_id)}
            await asyncio.gather(
                *(self.router.broadcast(t, OutboundEvent.ISSUE_ASSIGNED.value, payload) for t in topics)
            )
        self._outcomes.append(outcome)
        return outcome

    @staticmethod
    def _outcome(
        responder: Actor,
        requester_id: str,
        issue_id: str,
        success: bool,
        reason: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> AssignmentOutcome:
        return AssignmentOutcome(
            issue_id=issue_id,
            responder=responder.id,
            requester=requester_id,
            success=success,
            reason=reason,
            detail=detail,
            completed_at=datetime.now(timezone.utc),
        )
