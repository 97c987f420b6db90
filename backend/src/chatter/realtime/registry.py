"""User -> open connection bookkeeping used to derive presence."""

from __future__ import annotations

from typing import Dict, Set


class ConnectionRegistry:
    """Track the open connections of each authenticated user.

    A user id is present iff it has at least one open connection. ``register``
    and ``unregister`` report the 0 -> 1 and 1 -> 0 transitions so the caller
    can announce presence exactly once per transition. All operations are
    plain set mutations and never await.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, Set[str]] = {}

    def register(self, user_id: str, connection_id: str) -> bool:
        """Add *connection_id* for *user_id*; True when the user came online."""

        bucket = self._connections.get(user_id)
        if bucket is None:
            self._connections[user_id] = {connection_id}
            return True
        bucket.add(connection_id)
        return False

    def unregister(self, user_id: str, connection_id: str) -> bool:
        """Remove *connection_id*; True when the user went offline."""

        bucket = self._connections.get(user_id)
        if not bucket or connection_id not in bucket:
            return False
        bucket.discard(connection_id)
        if bucket:
            return False
        self._connections.pop(user_id, None)
        return True

    def connections_for(self, user_id: str) -> set[str]:
        return set(self._connections.get(user_id, ()))

    def connection_count(self, user_id: str) -> int:
        return len(self._connections.get(user_id, ()))

    def is_online(self, user_id: str) -> bool:
        return user_id in self._connections

    def online_users(self) -> list[str]:
        return sorted(self._connections)

    def __len__(self) -> int:
        return len(self._connections)
