from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.pool import StaticPool

from app.database import _engine_options
from app.models import Channel, ChannelMember, Message, User
from app.services.chat_store import SqlChatStore
from chatter.realtime.errors import NotFound, PersistenceFailure
from chatter.realtime.store import Attachment


@pytest.fixture()
def users(session_factory) -> dict[str, str]:
    with session_factory() as session:
        created = {name: User(name=name, email=f"{name}@example.com") for name in ("alice", "bob")}
        session.add_all(created.values())
        session.commit()
        return {name: user.id for name, user in created.items()}


@pytest.fixture()
def store(session_factory) -> SqlChatStore:
    return SqlChatStore(session_factory)


@pytest.mark.anyio("asyncio")
async def test_create_channel_adds_creator_as_member(store, users) -> None:
    channel = await store.create_channel(name="general", created_by=users["alice"], is_private=False)

    fetched = await store.get_channel(channel.id)

    assert fetched is not None
    assert fetched.member_ids == frozenset({users["alice"]})
    assert fetched.is_private is False
    assert await store.get_channel("missing") is None


@pytest.mark.anyio("asyncio")
async def test_membership_and_requests_round_trip(store, users) -> None:
    channel = await store.create_channel(name="secret", created_by=users["alice"], is_private=True)

    assert await store.add_join_request(channel.id, users["bob"]) is True
    assert await store.add_join_request(channel.id, users["bob"]) is False
    assert (await store.get_channel(channel.id)).pending_ids == frozenset({users["bob"]})

    assert await store.remove_join_request(channel.id, users["bob"]) is True
    assert await store.add_member(channel.id, users["bob"]) is True
    assert await store.add_member(channel.id, users["bob"]) is False
    assert users["bob"] in (await store.get_channel(channel.id)).member_ids

    assert await store.remove_member(channel.id, users["bob"]) is True
    assert await store.remove_member(channel.id, users["bob"]) is False


@pytest.mark.anyio("asyncio")
async def test_add_member_to_missing_channel(store, users) -> None:
    with pytest.raises(NotFound):
        await store.add_member("missing", users["bob"])


@pytest.mark.anyio("asyncio")
async def test_get_members_resolves_user_records(store, users) -> None:
    members = await store.get_members([users["bob"], users["alice"], "ghost"])

    assert [member.name for member in members] == ["alice", "bob"]
    assert members[0].email == "alice@example.com"
    assert await store.get_members([]) == []


@pytest.mark.anyio("asyncio")
async def test_message_lifecycle(store, users) -> None:
    channel = await store.create_channel(name="general", created_by=users["alice"], is_private=False)

    created = await store.create_message(
        channel_id=channel.id,
        sender_id=users["alice"],
        text="hello",
        attachments=[Attachment(url="https://files.example.com/a.png", mime_type="image/png")],
        client_id="tmp-1",
    )

    assert created.sender_name == "alice"
    assert created.client_id == "tmp-1"
    assert created.attachments[0].mime_type == "image/png"
    assert created.to_payload()["attachments"][0]["mimeType"] == "image/png"

    edited_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    edited = await store.update_message_text(created.id, "hello again", edited_at)
    assert edited.text == "hello again"
    assert edited.edited_at is not None

    deleted = await store.mark_message_deleted(created.id)
    assert deleted.deleted is True
    assert (await store.get_message(created.id)).deleted is True

    with pytest.raises(NotFound):
        await store.mark_message_deleted("missing")


@pytest.mark.anyio("asyncio")
async def test_delete_channel_cascades(store, users, session_factory) -> None:
    channel = await store.create_channel(name="doomed", created_by=users["alice"], is_private=False)
    await store.add_member(channel.id, users["bob"])
    await store.create_message(
        channel_id=channel.id, sender_id=users["bob"], text="bye", attachments=[], client_id=None
    )

    assert await store.delete_channel(channel.id) is True
    assert await store.delete_channel(channel.id) is False

    with session_factory() as session:
        assert session.get(Channel, channel.id) is None
        assert session.execute(select(Message)).scalars().all() == []
        assert session.execute(select(ChannelMember)).scalars().all() == []


@pytest.mark.anyio("asyncio")
async def test_database_errors_become_persistence_failures(store, test_engine) -> None:
    Channel.__table__.drop(test_engine)

    with pytest.raises(PersistenceFailure):
        await store.get_channel("anything")


def test_engine_options_follow_database_url() -> None:
    assert _engine_options("sqlite:///:memory:")["poolclass"] is StaticPool
    assert "poolclass" not in _engine_options("sqlite:///./chatter.db")
    assert _engine_options("sqlite:///./chatter.db")["connect_args"] == {"check_same_thread": False}
    assert _engine_options("postgresql://chatter@db/chatter")["pool_pre_ping"] is True
