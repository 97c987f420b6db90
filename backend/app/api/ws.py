"""WebSocket endpoint for realtime chat."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

from fastapi import APIRouter, WebSocket, status
from fastapi.websockets import WebSocketDisconnect, WebSocketState

from chatter.realtime import Connection, RealtimeCoordinator, TransportUnavailableError, get_coordinator
from chatter.realtime.connection import safe_send_json
from chatter.realtime.handlers import AckCallback

from app.config import get_settings

router = APIRouter(tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or {"event": "ping"}
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break

            now = time.monotonic()
            should_ping = interval <= 0 or (
                now - last_activity >= interval
                and (last_ping_sent is None or now - last_ping_sent >= interval)
            )
            if should_ping:
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            raise
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


def _extract_token(websocket: WebSocket) -> str | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    return token or None


async def _send_error(websocket: WebSocket, detail: str) -> None:
    await safe_send_json(websocket, {"event": "error", "data": {"error": detail}})


def _decode_frame(raw_message: str) -> Dict[str, Any] | None:
    try:
        frame = json.loads(raw_message)
    except json.JSONDecodeError:
        return None
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        return None
    return frame


async def _dispatch_frame(
    coordinator: RealtimeCoordinator, connection: Connection, frame: Dict[str, Any]
) -> None:
    event = frame["event"]
    ack_id = frame.get("ack")

    ack: AckCallback | None = None
    if ack_id is not None:
        async def reply(result: Dict[str, Any]) -> None:
            await connection.send_ack(ack_id, result)

        ack = reply

    result = await coordinator.handle_event(connection, event, frame.get("data"), ack)
    if result is None:
        detail = f"Unknown event: {event}"
        await _send_error(connection.websocket, detail)
        if ack is not None:
            await ack({"ok": False, "error": detail})


@router.websocket("/ws")
async def websocket_chat(websocket: WebSocket) -> None:
    """Bidirectional event stream for one client.

    Anonymous sockets are accepted; actions that need an identity are refused
    through their acknowledgment instead of closing the socket.
    """

    try:
        coordinator = get_coordinator()
    except TransportUnavailableError:
        logger.error("Realtime coordinator unavailable; rejecting websocket")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="Realtime unavailable")
        return

    await websocket.accept()
    connection = Connection(websocket)
    try:
        identity = await coordinator.open_connection(connection, _extract_token(websocket))
        await connection.send(
            "session",
            {
                "connectionId": connection.id,
                "userId": identity.user_id if identity else None,
                "authenticated": identity is not None,
            },
        )

        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            frame = _decode_frame(raw_message)
            if frame is None:
                await _send_error(websocket, "Invalid payload")
                continue
            if frame["event"] == "ping":
                await safe_send_json(websocket, {"event": "pong"})
                continue
            await _dispatch_frame(coordinator, connection, frame)
    finally:
        await coordinator.close_connection(connection)
