"""Tests for the Room Router."""

import asyncio
from datetime import datetime, timezone

from fixit_live.models.user import UserProfile
from fixit_live.presence.registry import Connection
from fixit_live.rooms.router import (
    RoomRouter,
    department_topic,
    issue_topic,
    user_topic,
)


class RecordingTransport:
    def __init__(self):
        self.frames = []

    async def send_json(self, data) -> None:
        self.frames.append(data)


class BrokenTransport:
    async def send_json(self, data) -> None:
        raise RuntimeError("socket closed")


def _make_connection(identity: str, transport=None) -> Connection:
    profile = UserProfile(
        id=identity,
        external_id=f"EMP_{identity}",
        first_name=identity.title(),
        last_name="Tester",
        department="IT Support",
        last_active=datetime.now(timezone.utc),
    )
    return Connection(profile, transport or RecordingTransport())


class TestTopics:
    def test_topic_names(self):
        assert user_topic("u1") == "user:u1"
        assert department_topic("IT") == "department:IT"
        assert issue_topic("i1") == "issue:i1"


class TestRoomRouter:
    def setup_method(self):
        self.router = RoomRouter()

    def test_join_and_leave(self):
        conn = _make_connection("alice")
        self.router.join(conn, "department:IT")
        assert self.router.members("department:IT") == [conn]
        assert "department:IT" in conn.topics

        self.router.leave(conn, "department:IT")
        assert self.router.members("department:IT") == []
        assert conn.topics == set()
        assert "department:IT" not in self.router.topics()

    def test_broadcast_excludes_sender(self):
        alice = _make_connection("alice")
        bob = _make_connection("bob")
        for c in (alice, bob):
            self.router.join(c, "department:IT")

        delivered = asyncio.run(
            self.router.broadcast("department:IT", "issue:updated", {"x": 1}, exclude=alice)
        )

        assert delivered == 1
        assert alice.transport.frames == []
        assert bob.transport.frames == [{"event": "issue:updated", "data": {"x": 1}}]

    def test_failed_member_does_not_block_others(self):
        broken = _make_connection("broken", BrokenTransport())
        healthy = _make_connection("healthy")
        self.router.join(broken, "issue:1")
        self.router.join(healthy, "issue:1")

        delivered = asyncio.run(self.router.broadcast("issue:1", "comment:added", {}))

        assert delivered == 1
        assert len(healthy.transport.frames) == 1

    def test_leave_all_stops_delivery(self):
        conn = _make_connection("alice")
        self.router.join(conn, "user:alice")
        self.router.join(conn, "department:IT")

        self.router.leave_all(conn)

        assert conn.alive is False
        assert conn.topics == set()
        assert asyncio.run(self.router.broadcast("user:alice", "x", {})) == 0
        assert asyncio.run(self.router.send(conn, "x", {})) is False
        assert conn.transport.frames == []

    def test_dead_connection_cannot_rejoin(self):
        conn = _make_connection("alice")
        self.router.leave_all(conn)
        self.router.join(conn, "user:alice")
        assert self.router.members("user:alice") == []

    def test_broadcast_to_empty_topic(self):
        assert asyncio.run(self.router.broadcast("issue:none", "x", {})) == 0
