"""Fan-out of realtime events to rooms, users and every open connection."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable

from app.monitoring.metrics import (
    realtime_delivery_failures_total,
    realtime_events_total,
    realtime_presence_transitions_total,
)

from .connection import Connection
from .registry import ConnectionRegistry
from .rooms import RoomMembershipTracker

logger = logging.getLogger(__name__)


class EventDispatcher:
    """Deliver named events on a best-effort basis.

    Targets are resolved when the call starts; connections joining later do
    not see the event. A failed send to one connection is logged and skipped.
    Each method returns the number of deliveries attempted.
    """

    def __init__(self, registry: ConnectionRegistry, rooms: RoomMembershipTracker) -> None:
        self._registry = registry
        self._rooms = rooms
        self._open: Dict[str, Connection] = {}

    # ------------------------------------------------------------------
    # Open connection set
    # ------------------------------------------------------------------
    def add(self, connection: Connection) -> None:
        self._open[connection.id] = connection

    def discard(self, connection_id: str) -> None:
        self._open.pop(connection_id, None)

    def get(self, connection_id: str) -> Connection | None:
        return self._open.get(connection_id)

    def open_count(self) -> int:
        return len(self._open)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------
    async def to_room(self, room_id: str, event: str, payload: Any) -> int:
        return await self._deliver(self._rooms.members(room_id), event, payload, scope="room")

    async def to_user(self, user_id: str, event: str, payload: Any) -> int:
        return await self._deliver(
            self._registry.connections_for(user_id), event, payload, scope="user"
        )

    async def broadcast_all(self, event: str, payload: Any) -> int:
        return await self._deliver(list(self._open), event, payload, scope="broadcast")

    async def _deliver(
        self, connection_ids: Iterable[str], event: str, payload: Any, *, scope: str
    ) -> int:
        targets = [self._open.get(connection_id) for connection_id in connection_ids]
        attempted = 0
        for connection in targets:
            if connection is None:
                continue
            attempted += 1
            try:
                delivered = await connection.send(event, payload)
            except Exception:
                logger.warning(
                    "Realtime delivery raised; skipping connection",
                    exc_info=True,
                    extra={"connection_id": connection.id, "event": event},
                )
                delivered = False
            if not delivered:
                realtime_delivery_failures_total.labels(scope).inc()
                logger.debug(
                    "Realtime delivery failed",
                    extra={"connection_id": connection.id, "event": event, "scope": scope},
                )
        realtime_events_total.labels(event, "out").inc()
        return attempted

    async def publish_presence(self, user_id: str, online: bool) -> int:
        """Broadcast a presence transition to every open connection."""

        realtime_presence_transitions_total.labels("online" if online else "offline").inc()
        logger.info("Presence %s => %s", user_id, "online" if online else "offline")
        return await self.broadcast_all("presence:update", {"userId": user_id, "online": online})
