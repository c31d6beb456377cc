"""
Live Coordination Service: connection lifecycle on top of the presence
registry, room router and event dispatcher.

Lifecycle:
  authenticate -> register presence -> join personal/department topics
  -> dispatch events -> disconnect (leave all topics, unregister,
  record last active)

Authentication failure commits no state. Disconnection is the only
cancellation signal for a connection.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fixit_live.assignment.coordinator import AssignmentCoordinator
from fixit_live.auth.credentials import CredentialVerifier
from fixit_live.config import CoordinatorConfig
from fixit_live.dispatch.events import EventDispatcher
from fixit_live.errors import AuthFailure
from fixit_live.models.assignment import AssignmentOutcome
from fixit_live.models.user import UserProfile
from fixit_live.presence.registry import Connection, PresenceRegistry, Transport
from fixit_live.rooms.router import RoomRouter, department_topic, user_topic
from fixit_live.store.issue_store import IssueStore
from fixit_live.store.user_store import UserStore

logger = logging.getLogger(__name__)


class LiveCoordinationService:
    """Owns every live connection in this process."""

    def __init__(
        self,
        config: CoordinatorConfig,
        issue_store: IssueStore,
        user_store: UserStore,
        coordinator: Optional[AssignmentCoordinator] = None,
        verifier: Optional[CredentialVerifier] = None,
    ):
        self.config = config
        self.issue_store = issue_store
        self.user_store = user_store
        self.registry = PresenceRegistry()
        self.router = RoomRouter()
        self.verifier = verifier or CredentialVerifier(config)
        self.coordinator = coordinator or AssignmentCoordinator(
            issue_store, user_store, config
        )
        self.dispatcher = EventDispatcher(
            router=self.router,
            coordinator=self.coordinator,
            user_store=user_store,
            on_disconnect=self.disconnect,
            outcome_history=config.outcome_history,
        )

    def authenticate(self, token: Optional[str]) -> UserProfile:
        """Resolve a bearer credential to an active profile or raise AuthFailure."""
        identity = self.verifier.verify(token)
        profile = self.user_store.find_by_id(identity)
        if profile is None or not profile.is_active:
            raise AuthFailure("User not found or inactive")
        return profile

    async def connect(
        self,
        token: Optional[str],
        transport: Transport,
        handle: Optional[str] = None,
    ) -> Connection:
        profile = self.authenticate(token)
        connection = Connection(profile, transport, handle)

        superseded = self.registry.register(profile.id, connection)
        if superseded is not None:
            # Only the newest connection may receive or emit for this identity
            self.router.leave_all(superseded)
            logger.info(
                "Connection %s supersedes %s for %s",
                connection.handle,
                superseded.handle,
                profile.id,
            )
        self.router.join(connection, user_topic(profile.id))
        if profile.department:
            self.router.join(connection, department_topic(profile.department))

        self.user_store.update_last_active(profile.id, datetime.now(timezone.utc))
        logger.info("User connected: %s (%s)", profile.id, connection.handle)
        return connection

    async def disconnect(self, connection: Connection) -> None:
        """Remove the connection from every topic and from presence. Idempotent."""
        was_alive = connection.alive
        self.router.leave_all(connection)
        self.registry.unregister(connection.handle)
        if not was_alive:
            return
        self.user_store.update_last_active(
            connection.identity, datetime.now(timezone.utc)
        )
        logger.info("User disconnected: %s (%s)", connection.identity, connection.handle)

    async def handle(self, connection: Connection, event: str, data) -> bool:
        if not connection.alive:
            return False
        return await self.dispatcher.dispatch(connection, event, data)

    # --- Server-initiated notifications ---

    async def notify_user(self, identity: str, event: str, payload: dict) -> int:
        return await self.router.broadcast(user_topic(identity), event, payload)

    async def notify_department(self, department: str, event: str, payload: dict) -> int:
        return await self.router.broadcast(department_topic(department), event, payload)

    async def notify_all(self, event: str, payload: dict) -> int:
        targets = [
            c for c in (self.registry.lookup(i) for i in self.registry.all_online_identities())
            if c is not None
        ]
        results = await asyncio.gather(*(self.router.send(c, event, payload) for c in targets))
        return sum(1 for ok in results if ok)

    # --- Introspection ---

    def connected_identities(self) -> List[str]:
        return sorted(self.registry.all_online_identities())

    def is_online(self, identity: str) -> bool:
        return self.registry.is_online(identity)

    @property
    def acceptance_outcomes(self) -> List[AssignmentOutcome]:
        return self.dispatcher.acceptance_outcomes

    async def drain(self) -> List[AssignmentOutcome]:
        """Wait for in-flight help acceptances to complete."""
        return await self.dispatcher.drain()
