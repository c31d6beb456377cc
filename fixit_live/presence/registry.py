"""
Presence Registry: which identity is attached to which live connection.

Behavioral Contract:
- Forward (identity -> connection) and inverse (handle -> identity) maps
  are always updated together under one lock
- Per identity, the last register() wins; the superseded connection keeps
  its handle but no longer owns the identity
- unregister() of a superseded handle never removes the newer mapping
- Every operation is O(1)
"""

import threading
from typing import Any, Dict, Optional, Protocol, Set
from uuid import uuid4

from fixit_live.models.user import UserProfile


class Transport(Protocol):
    """Anything that can push a JSON-serializable frame to one client."""

    async def send_json(self, data: Any) -> None: ...


class Connection:
    """One authenticated live connection."""

    def __init__(
        self,
        profile: UserProfile,
        transport: Transport,
        handle: Optional[str] = None,
    ):
        self.handle = handle or f"conn_{uuid4().hex[:12]}"
        self.profile = profile
        self.transport = transport
        self.topics: Set[str] = set()
        self.alive = True

    @property
    def identity(self) -> str:
        return self.profile.id

    def __repr__(self) -> str:
        return f"Connection(handle={self.handle!r}, identity={self.identity!r})"


class PresenceRegistry:
    """Thread-safe bidirectional identity <-> connection map."""

    def __init__(self):
        self._lock = threading.Lock()
        self._by_identity: Dict[str, Connection] = {}
        self._by_handle: Dict[str, str] = {}

    def register(self, identity: str, connection: Connection) -> Optional[Connection]:
        """
        Attach identity to connection. Returns the superseded connection,
        if any.
        """
        with self._lock:
            previous = self._by_identity.get(identity)
            if previous is not None and previous.handle != connection.handle:
                self._by_handle.pop(previous.handle, None)
            else:
                previous = None
            self._by_identity[identity] = connection
            self._by_handle[connection.handle] = identity
            return previous

    def unregister(self, handle: str) -> Optional[str]:
        """Remove the entry owned by handle. Returns the identity, or None."""
        with self._lock:
            identity = self._by_handle.pop(handle, None)
            if identity is None:
                return None
            current = self._by_identity.get(identity)
            if current is not None and current.handle == handle:
                del self._by_identity[identity]
            return identity

    def lookup(self, identity: str) -> Optional[Connection]:
        with self._lock:
            return self._by_identity.get(identity)

    def identity_for(self, handle: str) -> Optional[str]:
        with self._lock:
            return self._by_handle.get(handle)

    def is_online(self, identity: str) -> bool:
        with self._lock:
            return identity in self._by_identity

    def all_online_identities(self) -> Set[str]:
        with self._lock:
            return set(self._by_identity)

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_identity)
