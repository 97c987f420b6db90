from __future__ import annotations

from typing import Any

from starlette.testclient import WebSocketTestSession


def _headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _receive_event(connection: WebSocketTestSession, event: str) -> dict[str, Any]:
    """Skip unrelated frames until *event* arrives."""

    for _ in range(20):
        frame = connection.receive_json()
        if frame.get("event") == event:
            return frame["data"]
    raise AssertionError(f"{event} not received")


def _create_channel(client, token: str, name: str, *, is_private: bool) -> dict[str, Any]:
    response = client.post("/api/channels", json={"name": name, "isPrivate": is_private}, headers=_headers(token))
    assert response.status_code == 201, response.text
    return response.json()


def test_requests_without_token_are_rejected(client) -> None:
    assert client.post("/api/channels", json={"name": "x"}).status_code == 401
    assert client.get("/api/presence", headers=_headers("bogus")).status_code == 401


def test_bearer_scheme_is_advertised_without_token_endpoint(client) -> None:
    schema = client.get("/openapi.json").json()

    [scheme] = schema["components"]["securitySchemes"].values()
    assert scheme == {"type": "http", "scheme": "bearer"}
    assert "/api/auth/token" not in schema["paths"]


def test_create_channel_and_list_members(client, make_user) -> None:
    alice_id, alice_token = make_user("Alice")

    channel = _create_channel(client, alice_token, "general", is_private=False)
    members = client.get(f"/api/channels/{channel['_id']}/members", headers=_headers(alice_token))

    assert channel["createdBy"] == alice_id
    assert channel["members"] == [alice_id]
    assert members.status_code == 200
    body = members.json()
    assert [member["_id"] for member in body["members"]] == [alice_id]
    assert body["members"][0]["email"] == "alice@example.com"
    assert body["pendingRequests"] == []


def test_blank_channel_name_is_rejected(client, make_user) -> None:
    _, token = make_user("Alice")

    response = client.post("/api/channels", json={"name": "   "}, headers=_headers(token))

    assert response.status_code == 400
    assert response.json() == {"detail": "Channel name required"}


def test_join_public_and_private_channels(client, make_user) -> None:
    _, alice_token = make_user("Alice")
    bob_id, bob_token = make_user("Bob")
    public = _create_channel(client, alice_token, "lobby", is_private=False)
    private = _create_channel(client, alice_token, "secret", is_private=True)

    joined = client.post(f"/api/channels/{public['_id']}/join", headers=_headers(bob_token))
    refused = client.post(f"/api/channels/{private['_id']}/join", headers=_headers(bob_token))
    missing = client.post("/api/channels/nope/join", headers=_headers(bob_token))

    assert joined.status_code == 200
    assert bob_id in joined.json()["members"]
    assert refused.status_code == 403
    assert refused.json() == {"detail": "Channel is private"}
    assert missing.status_code == 404


def test_join_request_workflow_notifies_creator_and_requester(client, make_user) -> None:
    alice_id, alice_token = make_user("Alice")
    bob_id, bob_token = make_user("Bob")
    channel = _create_channel(client, alice_token, "secret", is_private=True)
    channel_id = channel["_id"]

    with client.websocket_connect(f"/ws?token={alice_token}") as alice_ws, client.websocket_connect(
        f"/ws?token={bob_token}"
    ) as bob_ws:
        _receive_event(alice_ws, "session")
        _receive_event(bob_ws, "session")
        requested = client.post(f"/api/channels/{channel_id}/requests", headers=_headers(bob_token))
        again = client.post(f"/api/channels/{channel_id}/requests", headers=_headers(bob_token))

        assert requested.json() == {"status": "pending"}
        assert again.json() == {"status": "pending"}
        assert _receive_event(alice_ws, "channel:joinRequest") == {
            "channelId": channel_id,
            "channelName": "secret",
            "requester": {"_id": bob_id, "name": "Bob"},
        }

        forbidden = client.post(
            f"/api/channels/{channel_id}/requests/{bob_id}/approve", headers=_headers(bob_token)
        )
        approved = client.post(
            f"/api/channels/{channel_id}/requests/{bob_id}/approve", headers=_headers(alice_token)
        )

        assert forbidden.status_code == 403
        assert approved.status_code == 200
        assert bob_id in approved.json()["members"]
        assert _receive_event(bob_ws, "channel:request:approved") == {
            "channelId": channel_id,
            "channelName": "secret",
            "userId": bob_id,
        }

    member_request = client.post(f"/api/channels/{channel_id}/requests", headers=_headers(bob_token))
    assert member_request.json() == {"status": "already_member"}

    listing = client.get(f"/api/channels/{channel_id}/members", headers=_headers(alice_token)).json()
    assert sorted(member["_id"] for member in listing["members"]) == sorted([alice_id, bob_id])
    assert listing["pendingRequests"] == []


def test_reject_request_notifies_requester(client, make_user) -> None:
    _, alice_token = make_user("Alice")
    bob_id, bob_token = make_user("Bob")
    channel_id = _create_channel(client, alice_token, "secret", is_private=True)["_id"]
    client.post(f"/api/channels/{channel_id}/requests", headers=_headers(bob_token))

    with client.websocket_connect(f"/ws?token={bob_token}") as bob_ws:
        _receive_event(bob_ws, "session")
        rejected = client.post(
            f"/api/channels/{channel_id}/requests/{bob_id}/reject", headers=_headers(alice_token)
        )
        assert rejected.status_code == 204
        assert _receive_event(bob_ws, "channel:request:rejected")["userId"] == bob_id

    again = client.post(f"/api/channels/{channel_id}/requests/{bob_id}/reject", headers=_headers(alice_token))
    assert again.status_code == 404


def test_remove_member_and_leave(client, make_user) -> None:
    alice_id, alice_token = make_user("Alice")
    bob_id, bob_token = make_user("Bob")
    carol_id, carol_token = make_user("Carol")
    channel_id = _create_channel(client, alice_token, "lobby", is_private=False)["_id"]
    client.post(f"/api/channels/{channel_id}/join", headers=_headers(bob_token))
    client.post(f"/api/channels/{channel_id}/join", headers=_headers(carol_token))

    with client.websocket_connect(f"/ws?token={bob_token}") as bob_ws:
        _receive_event(bob_ws, "session")
        self_removal = client.delete(
            f"/api/channels/{channel_id}/members/{alice_id}", headers=_headers(alice_token)
        )
        removed = client.delete(f"/api/channels/{channel_id}/members/{bob_id}", headers=_headers(alice_token))

        assert self_removal.status_code == 400
        assert removed.status_code == 204
        assert _receive_event(bob_ws, "channel:removed") == {"channelId": channel_id}

    left = client.post(f"/api/channels/{channel_id}/leave", headers=_headers(carol_token))
    not_member = client.post(f"/api/channels/{channel_id}/leave", headers=_headers(carol_token))

    assert left.json() == {"channelId": channel_id, "left": True}
    assert not_member.json() == {"channelId": channel_id, "left": False}
    listing = client.get(f"/api/channels/{channel_id}/members", headers=_headers(alice_token)).json()
    assert [member["_id"] for member in listing["members"]] == [alice_id]
    assert carol_id not in [member["_id"] for member in listing["members"]]


def test_delete_channel_broadcasts_to_everyone(client, make_user) -> None:
    _, alice_token = make_user("Alice")
    _, bob_token = make_user("Bob")
    channel_id = _create_channel(client, alice_token, "doomed", is_private=False)["_id"]

    with client.websocket_connect("/ws") as anonymous_ws:
        _receive_event(anonymous_ws, "session")
        denied = client.delete(f"/api/channels/{channel_id}", headers=_headers(bob_token))
        deleted = client.delete(f"/api/channels/{channel_id}", headers=_headers(alice_token))

        assert denied.status_code == 403
        assert deleted.status_code == 204
        assert _receive_event(anonymous_ws, "channel:deleted") == {"channelId": channel_id}

    gone = client.get(f"/api/channels/{channel_id}/members", headers=_headers(alice_token))
    assert gone.status_code == 404


def test_presence_snapshot_lists_connected_users(client, make_user) -> None:
    alice_id, alice_token = make_user("Alice")

    before = client.get("/api/presence", headers=_headers(alice_token)).json()
    with client.websocket_connect(f"/ws?token={alice_token}") as alice_ws:
        _receive_event(alice_ws, "session")
        during = client.get("/api/presence", headers=_headers(alice_token)).json()

    assert before == {"online": []}
    assert during == {"online": [alice_id]}
