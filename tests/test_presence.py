"""Tests for the Presence Registry."""

import threading
from datetime import datetime, timezone

from fixit_live.models.user import UserProfile
from fixit_live.presence.registry import Connection, PresenceRegistry


class _NullTransport:
    async def send_json(self, data) -> None:
        return None


def _make_connection(identity: str, handle: str) -> Connection:
    profile = UserProfile(
        id=identity,
        external_id=f"EMP_{identity}",
        first_name=identity.title(),
        last_name="Tester",
        last_active=datetime.now(timezone.utc),
    )
    return Connection(profile, _NullTransport(), handle=handle)


class TestPresenceRegistry:
    def setup_method(self):
        self.registry = PresenceRegistry()

    def test_register_and_lookup(self):
        conn = _make_connection("alice", "h1")
        self.registry.register("alice", conn)

        assert self.registry.lookup("alice") is conn
        assert self.registry.identity_for("h1") == "alice"
        assert self.registry.is_online("alice")
        assert self.registry.all_online_identities() == {"alice"}

    def test_unregister_removes_both_directions(self):
        self.registry.register("alice", _make_connection("alice", "h1"))

        assert self.registry.unregister("h1") == "alice"
        assert not self.registry.is_online("alice")
        assert self.registry.identity_for("h1") is None
        assert len(self.registry) == 0

    def test_unregister_unknown_handle_is_noop(self):
        assert self.registry.unregister("missing") is None

    def test_last_register_wins(self):
        first = _make_connection("alice", "h1")
        second = _make_connection("alice", "h2")
        self.registry.register("alice", first)

        superseded = self.registry.register("alice", second)
        assert superseded is first
        assert self.registry.lookup("alice") is second
        assert self.registry.identity_for("h1") is None

    def test_superseded_disconnect_keeps_newer_mapping(self):
        self.registry.register("alice", _make_connection("alice", "h1"))
        newer = _make_connection("alice", "h2")
        self.registry.register("alice", newer)

        self.registry.unregister("h1")
        assert self.registry.lookup("alice") is newer
        assert self.registry.is_online("alice")

    def test_concurrent_registration(self):
        connections = [_make_connection(f"user{i}", f"h{i}") for i in range(50)]
        threads = [
            threading.Thread(target=self.registry.register, args=(c.identity, c))
            for c in connections
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(self.registry.all_online_identities()) == 50
