"""
Room Router: topic membership and best-effort fan-out.

Topics are opaque strings: user:<id>, department:<name>, issue:<id>.
Membership lives only in memory and is rebuilt on every connect.

Delivery is concurrent and fire-and-forget: a member that went away
between the membership snapshot and the send, or whose transport raises,
is skipped. Delivery failures are never retried and never propagate.
"""

import asyncio
import logging
import threading
from typing import Dict, List, Optional

from fixit_live.presence.registry import Connection

logger = logging.getLogger(__name__)


def user_topic(identity: str) -> str:
    return f"user:{identity}"


def department_topic(department: str) -> str:
    return f"department:{department}"


def issue_topic(issue_id: str) -> str:
    return f"issue:{issue_id}"


class RoomRouter:
    """Topic membership plus fan-out of named events to topic members."""

    def __init__(self):
        self._lock = threading.Lock()
        self._members: Dict[str, Dict[str, Connection]] = {}

    def join(self, connection: Connection, topic: str) -> None:
        with self._lock:
            if not connection.alive:
                return
            self._members.setdefault(topic, {})[connection.handle] = connection
            connection.topics.add(topic)

    def leave(self, connection: Connection, topic: str) -> None:
        with self._lock:
            self._remove(connection, topic)

    def leave_all(self, connection: Connection) -> None:
        """Drop every membership of the connection and mark it dead."""
        with self._lock:
            connection.alive = False
            for topic in list(connection.topics):
                self._remove(connection, topic)

    def _remove(self, connection: Connection, topic: str) -> None:
        bucket = self._members.get(topic)
        if bucket is not None:
            bucket.pop(connection.handle, None)
            if not bucket:
                del self._members[topic]
        connection.topics.discard(topic)

    def members(self, topic: str) -> List[Connection]:
        with self._lock:
            return list(self._members.get(topic, {}).values())

    def topics(self) -> List[str]:
        with self._lock:
            return list(self._members)

    async def broadcast(
        self,
        topic: str,
        event: str,
        payload: dict,
        exclude: Optional[Connection] = None,
    ) -> int:
        """
        Deliver event to every member of topic except exclude.
        Returns the number of successful deliveries.
        """
        targets = [
            c for c in self.members(topic)
            if exclude is None or c.handle != exclude.handle
        ]
        if not targets:
            return 0
        results = await asyncio.gather(
            *(self.send(c, event, payload) for c in targets)
        )
        return sum(1 for ok in results if ok)

    async def send(self, connection: Connection, event: str, payload: dict) -> bool:
        """Send one frame to one connection. Returns False if it was dropped."""
        if not connection.alive:
            return False
        try:
            await connection.transport.send_json({"event": event, "data": payload})
            return True
        except Exception as e:
            logger.debug(
                "Dropped %s for %s: %s", event, connection.handle, e
            )
            return False
