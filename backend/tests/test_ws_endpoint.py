from __future__ import annotations

import time
from typing import Any

from starlette.testclient import WebSocketTestSession

from app.api import ws as ws_module


def _receive_event(connection: WebSocketTestSession, event: str) -> dict[str, Any]:
    for _ in range(20):
        frame = connection.receive_json()
        if frame.get("event") == event:
            return frame.get("data", {})
    raise AssertionError(f"{event} not received")


def _receive_ack(connection: WebSocketTestSession, ack_id: Any) -> dict[str, Any]:
    for _ in range(20):
        frame = connection.receive_json()
        if frame.get("event") == "ack" and frame.get("ack") == ack_id:
            return frame["data"]
    raise AssertionError(f"ack {ack_id} not received")


def test_session_frame_reports_identity(client, make_user) -> None:
    alice_id, alice_token = make_user("Alice")

    with client.websocket_connect(f"/ws?token={alice_token}") as connection:
        session = _receive_event(connection, "session")

    assert session["userId"] == alice_id
    assert session["authenticated"] is True
    assert session["connectionId"]


def test_bearer_header_and_anonymous_handshakes(client, make_user) -> None:
    alice_id, alice_token = make_user("Alice")

    with client.websocket_connect("/ws", headers={"Authorization": f"Bearer {alice_token}"}) as connection:
        assert _receive_event(connection, "session")["userId"] == alice_id

    with client.websocket_connect("/ws?token=garbage") as connection:
        session = _receive_event(connection, "session")
        connection.send_json({"event": "typing:start", "data": {"channelId": "x"}, "ack": "t1"})
        refused = _receive_ack(connection, "t1")

    assert session == {"connectionId": session["connectionId"], "userId": None, "authenticated": False}
    assert refused == {"ok": False, "error": "Unauthorized (socket)"}


def test_ping_invalid_and_unknown_frames(client) -> None:
    with client.websocket_connect("/ws") as connection:
        _receive_event(connection, "session")

        connection.send_json({"event": "ping"})
        assert connection.receive_json() == {"event": "pong"}

        connection.send_text("{not json")
        assert connection.receive_json() == {"event": "error", "data": {"error": "Invalid payload"}}

        connection.send_json({"event": "voice:join", "ack": 7})
        assert connection.receive_json() == {"event": "error", "data": {"error": "Unknown event: voice:join"}}
        assert _receive_ack(connection, 7) == {"ok": False, "error": "Unknown event: voice:join"}


def test_message_round_trip_between_two_clients(client, make_user) -> None:
    alice_id, alice_token = make_user("Alice")
    _, bob_token = make_user("Bob")
    response = client.post(
        "/api/channels",
        json={"name": "general", "isPrivate": False},
        headers={"Authorization": f"Bearer {alice_token}"},
    )
    channel_id = response.json()["_id"]

    with client.websocket_connect(f"/ws?token={alice_token}") as alice, client.websocket_connect(
        f"/ws?token={bob_token}"
    ) as bob:
        _receive_event(alice, "session")
        _receive_event(bob, "session")
        alice.send_json({"event": "channel:join", "data": {"channelId": channel_id}, "ack": 1})
        assert _receive_ack(alice, 1) == {"ok": True, "channelId": channel_id, "member": True}
        bob.send_json({"event": "channel:join", "data": {"channelId": channel_id}, "ack": 1})
        assert _receive_ack(bob, 1)["member"] is True

        alice.send_json(
            {
                "event": "message:new",
                "data": {"channelId": channel_id, "text": "hello", "clientId": "tmp-1"},
                "ack": 2,
            }
        )
        result = _receive_ack(alice, 2)
        received = _receive_event(bob, "message:received")

        bob.send_json({"event": "message:delete", "data": {"messageId": received["_id"]}, "ack": 3})
        denied = _receive_ack(bob, 3)

    assert result["ok"] is True
    assert result["message"] == received
    assert received["clientId"] == "tmp-1"
    assert received["senderId"] == alice_id
    assert received["senderName"] == "Alice"
    assert received["text"] == "hello"
    assert denied == {"ok": False, "error": "Forbidden"}


def test_keepalive_pings_idle_connection(client) -> None:
    settings = ws_module.settings
    original_timeout = settings.websocket_keepalive_timeout_seconds
    original_interval = settings.websocket_keepalive_ping_interval_seconds
    settings.websocket_keepalive_timeout_seconds = 0.1
    settings.websocket_keepalive_ping_interval_seconds = 0.05

    try:
        with client.websocket_connect("/ws") as connection:
            _receive_event(connection, "session")
            time.sleep(0.15)
            assert connection.receive_json() == {"event": "ping"}
            connection.send_json({"event": "ping"})
            assert _receive_event(connection, "pong") == {}
    finally:
        settings.websocket_keepalive_timeout_seconds = original_timeout
        settings.websocket_keepalive_ping_interval_seconds = original_interval


def test_metrics_and_health_endpoints(client) -> None:
    with client.websocket_connect("/ws") as connection:
        _receive_event(connection, "session")

    metrics = client.get("/metrics")
    health = client.get("/health")

    assert metrics.status_code == 200
    assert "# TYPE realtime_active_connections gauge" in metrics.text
    assert 'realtime_active_connections{scope="anonymous"}' in metrics.text
    assert "# TYPE realtime_events_total counter" in metrics.text
    assert health.json()["status"] == "ok"
