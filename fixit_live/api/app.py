"""
FixIT Live API: FastAPI endpoints and the live WebSocket.

Exposes the coordination core for:
- Live connections (WebSocket, bearer credential at connect)
- Helper suggestions (ranking)
- Issue lifecycle transitions (assign, progress, resolve, close)
- Voting
- Presence inspection
"""

import asyncio
import logging
import os
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from fastapi.websockets import WebSocketState
from pydantic import Field, ValidationError

from fixit_live.config import CoordinatorConfig, configure_logging
from fixit_live.dispatch.events import stamp
from fixit_live.errors import (
    AuthFailure,
    AuthorizationDenied,
    CoordinationError,
    DuplicateVote,
    InvalidTransition,
    MalformedPayload,
    NotFound,
    RaceLost,
)
from fixit_live.live.service import LiveCoordinationService
from fixit_live.models.events import EventFrame, OutboundEvent, WirePayload
from fixit_live.models.issue import VoteType
from fixit_live.models.user import UserProfile
from fixit_live.ranking.engine import RankingError, suggest_helpers
from fixit_live.store.issue_store import InMemoryIssueStore, IssueStore, SqliteIssueStore
from fixit_live.store.user_store import InMemoryUserStore, UserStore

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    AuthFailure: 401,
    AuthorizationDenied: 403,
    NotFound: 404,
    InvalidTransition: 409,
    RaceLost: 409,
    DuplicateVote: 400,
    MalformedPayload: 422,
}

# Policy violation close code for refused live connections
WS_POLICY_VIOLATION = 1008


# --- Request Models ---

class AssignRequest(WirePayload):
    assigned_to: str = Field(min_length=1)


class ResolveRequest(WirePayload):
    solution: str = Field(min_length=1)
    time_spent: int = Field(default=0, ge=0)


class VoteRequest(WirePayload):
    vote_type: VoteType


class WebSocketTransport:
    """Adapts a Starlette WebSocket to the router's Transport protocol."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send_json(self, data) -> None:
        if self.websocket.application_state != WebSocketState.CONNECTED:
            raise ConnectionError("websocket is no longer connected")
        await self.websocket.send_json(data)


# --- Application Factory ---

def create_app(
    config: CoordinatorConfig,
    issue_store: Optional[IssueStore] = None,
    user_store: Optional[UserStore] = None,
    service: Optional[LiveCoordinationService] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="FixIT Live API",
        description="FixIT help desk: real-time coordination core",
        version="0.1.0-alpha",
    )

    live = service or LiveCoordinationService(
        config=config,
        issue_store=issue_store or InMemoryIssueStore(),
        user_store=user_store or InMemoryUserStore(),
    )
    coordinator = live.coordinator

    # Store components on app state for access in endpoints and tests
    app.state.config = config
    app.state.live = live
    app.state.issue_store = live.issue_store
    app.state.user_store = live.user_store
    app.state.coordinator = coordinator

    @app.exception_handler(CoordinationError)
    async def coordination_error_handler(request, exc: CoordinationError):
        status = ERROR_STATUS.get(type(exc), 400)
        return JSONResponse(status_code=status, content=exc.to_dict())

    @app.exception_handler(RankingError)
    async def ranking_error_handler(request, exc: RankingError):
        return JSONResponse(
            status_code=400,
            content={"code": "invalid_ranking_request", "detail": str(exc)},
        )

    def current_user(authorization: Optional[str] = Header(None)) -> UserProfile:
        return live.authenticate(authorization)

    # === HEALTH / PRESENCE ===

    @app.get("/health")
    def health():
        return {"status": "ok", "connections": len(live.registry)}

    @app.get("/presence/online")
    def online_users(user: UserProfile = Depends(current_user)):
        """Identities with a live connection in this process."""
        return {"online": live.connected_identities()}

    @app.get("/help/pending")
    def pending_help_requests(user: UserProfile = Depends(current_user)):
        """Unexpired help requests addressed to the caller."""
        requests = coordinator.ledger.pending_for(user.id)
        return [r.model_dump(mode="json") for r in requests]

    # === HELPER SUGGESTIONS ===

    @app.get("/issues/{issue_id}/helpers")
    def helper_suggestions(
        issue_id: str,
        limit: Optional[int] = Query(None, ge=1),
        user: UserProfile = Depends(current_user),
    ):
        """Top ranked helpers for an issue."""
        issue = live.issue_store.find_by_id(issue_id)
        if issue is None:
            raise NotFound(f"Issue {issue_id} not found", issue_id=issue_id)

        candidates = live.user_store.find_candidates(
            issue.required_skills, exclude=[issue.posted_by]
        )
        top = suggest_helpers(
            candidates,
            issue.required_skills,
            category=issue.category,
            priority=issue.priority,
            limit=limit or config.suggestion_limit,
        )
        return {
            "issue": {
                "id": issue.id,
                "title": issue.title,
                "required_skills": issue.required_skills,
            },
            "helpers": [r.model_dump(mode="json") for r in top],
        }

    # === LIFECYCLE ===

    @app.put("/issues/{issue_id}/assign")
    async def assign_issue(
        issue_id: str,
        req: AssignRequest,
        user: UserProfile = Depends(current_user),
    ):
        """Owner assigns a helper; the helper is notified live."""
        issue = await asyncio.to_thread(
            coordinator.assign, issue_id, user.id, req.assigned_to
        )
        await live.notify_user(
            req.assigned_to,
            OutboundEvent.ISSUE_ASSIGNED.value,
            stamp(user.to_actor(), issueId=issue.id, assignedTo=req.assigned_to),
        )
        return issue.model_dump(mode="json")

    @app.put("/issues/{issue_id}/progress")
    async def start_progress(issue_id: str, user: UserProfile = Depends(current_user)):
        issue = await asyncio.to_thread(coordinator.start_progress, issue_id, user.id)
        return issue.model_dump(mode="json")

    @app.put("/issues/{issue_id}/resolve")
    async def resolve_issue(
        issue_id: str,
        req: ResolveRequest,
        user: UserProfile = Depends(current_user),
    ):
        """Assigned helper resolves; the helper's department is notified live."""
        issue = await asyncio.to_thread(
            coordinator.resolve, issue_id, user.id, req.solution, req.time_spent
        )
        if user.department:
            await live.notify_department(
                user.department,
                OutboundEvent.ISSUE_RESOLVED.value,
                stamp(
                    user.to_actor(),
                    issueId=issue.id,
                    resolution=issue.resolution.model_dump(mode="json"),
                ),
            )
        return issue.model_dump(mode="json")

    @app.put("/issues/{issue_id}/close")
    async def close_issue(issue_id: str, user: UserProfile = Depends(current_user)):
        issue = await asyncio.to_thread(coordinator.close, issue_id, user.id)
        return issue.model_dump(mode="json")

    @app.post("/issues/{issue_id}/vote")
    async def vote_issue(
        issue_id: str,
        req: VoteRequest,
        user: UserProfile = Depends(current_user),
    ):
        issue = await asyncio.to_thread(coordinator.vote, issue_id, user.id, req.vote_type)
        return {
            "vote_count": issue.vote_count,
            "upvotes": len(issue.upvotes),
            "downvotes": len(issue.downvotes),
        }

    # === LIVE CONNECTION ===

    @app.websocket("/ws")
    async def live_socket(websocket: WebSocket, token: Optional[str] = None):
        credential = token or websocket.headers.get("authorization")
        try:
            # Registered before accept so presence is visible once the handshake completes
            connection = await live.connect(credential, WebSocketTransport(websocket))
        except AuthFailure as e:
            logger.info("Refused live connection: %s", e.message)
            await websocket.close(code=WS_POLICY_VIOLATION)
            return

        try:
            await websocket.accept()
            while connection.alive:
                try:
                    raw = await websocket.receive_json()
                except (ValueError, TypeError, KeyError):
                    logger.warning("Dropped unreadable frame from %s", connection.identity)
                    continue
                try:
                    frame = EventFrame.model_validate(raw)
                except ValidationError:
                    logger.warning("Dropped malformed frame from %s", connection.identity)
                    continue
                await live.handle(connection, frame.event, frame.data)
        except WebSocketDisconnect:
            pass
        finally:
            await live.disconnect(connection)

        if (
            websocket.client_state == WebSocketState.CONNECTED
            and websocket.application_state == WebSocketState.CONNECTED
        ):
            await websocket.close()

    return app


def create_app_from_env() -> FastAPI:
    """Factory for `uvicorn --factory fixit_live.api.app:create_app_from_env`."""
    config = CoordinatorConfig.from_env()
    configure_logging(config.log_level)
    db_path = os.environ.get("FIXIT_ISSUE_DB")
    issue_store = SqliteIssueStore(db_path) if db_path else InMemoryIssueStore()
    return create_app(config, issue_store=issue_store)
