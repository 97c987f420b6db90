"""Transient channel room subscriptions."""

from __future__ import annotations

from typing import Dict, Set


class RoomMembershipTracker:
    """Map room ids to the connections subscribed to their events.

    Subscriptions are independent from persisted channel membership and are
    lost on restart. A reverse index lets ``leave_all`` run without scanning
    every room.
    """

    def __init__(self) -> None:
        self._rooms: Dict[str, Set[str]] = {}
        self._by_connection: Dict[str, Set[str]] = {}

    def join(self, room_id: str, connection_id: str) -> bool:
        members = self._rooms.setdefault(room_id, set())
        if connection_id in members:
            return False
        members.add(connection_id)
        self._by_connection.setdefault(connection_id, set()).add(room_id)
        return True

    def leave(self, room_id: str, connection_id: str) -> bool:
        members = self._rooms.get(room_id)
        if not members or connection_id not in members:
            return False
        members.discard(connection_id)
        if not members:
            self._rooms.pop(room_id, None)
        rooms = self._by_connection.get(connection_id)
        if rooms is not None:
            rooms.discard(room_id)
            if not rooms:
                self._by_connection.pop(connection_id, None)
        return True

    def leave_all(self, connection_id: str) -> list[str]:
        """Drop *connection_id* from every room and return the rooms it left."""

        rooms = sorted(self._by_connection.pop(connection_id, set()))
        for room_id in rooms:
            members = self._rooms.get(room_id)
            if members is None:
                continue
            members.discard(connection_id)
            if not members:
                self._rooms.pop(room_id, None)
        return rooms

    def close(self, room_id: str) -> list[str]:
        """Remove *room_id* entirely and return the connections it held."""

        members = sorted(self._rooms.pop(room_id, set()))
        for connection_id in members:
            rooms = self._by_connection.get(connection_id)
            if rooms is None:
                continue
            rooms.discard(room_id)
            if not rooms:
                self._by_connection.pop(connection_id, None)
        return members

    def members(self, room_id: str) -> set[str]:
        return set(self._rooms.get(room_id, ()))

    def rooms_for(self, connection_id: str) -> set[str]:
        return set(self._by_connection.get(connection_id, ()))

    def is_member(self, room_id: str, connection_id: str) -> bool:
        return connection_id in self._rooms.get(room_id, ())

    def room_count(self) -> int:
        return len(self._rooms)
