"""Transport-facing wrapper around a single websocket connection."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Identity:
    """User identity resolved during the handshake."""

    user_id: str
    name: str | None = None


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Send JSON through *websocket*, returning False when the socket is gone."""

    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


class Connection:
    """One client link. The coordinator never closes the underlying socket."""

    def __init__(self, websocket: WebSocket, *, connection_id: str | None = None) -> None:
        self.id = connection_id or uuid.uuid4().hex
        self.websocket = websocket
        self.identity: Identity | None = None
        self.closed = False

    @property
    def user_id(self) -> str | None:
        return self.identity.user_id if self.identity else None

    @property
    def display_name(self) -> str | None:
        return self.identity.name if self.identity else None

    @property
    def authenticated(self) -> bool:
        return self.identity is not None

    def bind(self, identity: Identity) -> None:
        self.identity = identity

    async def send(self, event: str, payload: Any) -> bool:
        return await safe_send_json(self.websocket, {"event": event, "data": payload})

    async def send_ack(self, ack_id: Any, result: dict[str, Any]) -> bool:
        return await safe_send_json(
            self.websocket, {"event": "ack", "ack": ack_id, "data": result}
        )

    def __repr__(self) -> str:
        return f"<Connection {self.id} user={self.user_id or 'anonymous'}>"
