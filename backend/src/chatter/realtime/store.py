"""Persistence collaborator interface consumed by the realtime core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Attachment(BaseModel):
    """File reference carried by a message."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    url: str
    filename: str | None = None
    mime_type: str | None = None


class MessageRecord(BaseModel):
    """Materialized message as stored and as broadcast to rooms."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(alias="_id")
    channel_id: str
    sender_id: str
    sender_name: str | None = None
    text: str = ""
    attachments: list[Attachment] = Field(default_factory=list)
    client_id: str | None = None
    created_at: datetime
    edited_at: datetime | None = None
    deleted: bool = False

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


@dataclass(slots=True)
class ChannelRecord:
    """Channel snapshot with membership resolved to plain user ids."""

    id: str
    name: str
    created_by: str
    is_private: bool = True
    member_ids: frozenset[str] = field(default_factory=frozenset)
    pending_ids: frozenset[str] = field(default_factory=frozenset)

    def has_member(self, user_id: str) -> bool:
        return user_id in self.member_ids

    def has_pending(self, user_id: str) -> bool:
        return user_id in self.pending_ids


@dataclass(slots=True)
class MemberRecord:
    """Full user record returned by member listings."""

    id: str
    name: str
    email: str | None = None
    avatar_url: str | None = None


class ChatStore(Protocol):
    """Durable channel/message/user records.

    Every call is request/response and may raise; callers translate failures
    into acknowledgment errors.
    """

    async def get_channel(self, channel_id: str) -> ChannelRecord | None: ...

    async def create_channel(
        self, *, name: str, created_by: str, is_private: bool
    ) -> ChannelRecord: ...

    async def delete_channel(self, channel_id: str) -> bool: ...

    async def add_member(self, channel_id: str, user_id: str) -> bool: ...

    async def remove_member(self, channel_id: str, user_id: str) -> bool: ...

    async def add_join_request(self, channel_id: str, user_id: str) -> bool: ...

    async def remove_join_request(self, channel_id: str, user_id: str) -> bool: ...

    async def get_members(self, user_ids: Sequence[str]) -> list[MemberRecord]: ...

    async def create_message(
        self,
        *,
        channel_id: str,
        sender_id: str,
        text: str,
        attachments: Sequence[Attachment],
        client_id: str | None,
    ) -> MessageRecord: ...

    async def get_message(self, message_id: str) -> MessageRecord | None: ...

    async def update_message_text(
        self, message_id: str, text: str, edited_at: datetime
    ) -> MessageRecord: ...

    async def mark_message_deleted(self, message_id: str) -> MessageRecord: ...
