"""Schemas for channel and membership endpoints."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from chatter.realtime.store import ChannelRecord, MemberRecord


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChannelCreate(_CamelModel):
    """Payload for creating a channel."""

    name: str = Field(..., max_length=128)
    is_private: bool = True


class ChannelRead(_CamelModel):
    id: str = Field(alias="_id")
    name: str
    created_by: str
    is_private: bool
    members: list[str] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: ChannelRecord) -> "ChannelRead":
        return cls(
            id=record.id,
            name=record.name,
            created_by=record.created_by,
            is_private=record.is_private,
            members=sorted(record.member_ids),
        )


class MemberRead(_CamelModel):
    id: str = Field(alias="_id")
    name: str
    email: str | None = None
    avatar_url: str | None = None

    @classmethod
    def from_record(cls, record: MemberRecord) -> "MemberRead":
        return cls(id=record.id, name=record.name, email=record.email, avatar_url=record.avatar_url)


class ChannelMembersRead(_CamelModel):
    """Resolved members and pending join requests of a channel."""

    channel_id: str
    members: list[MemberRead] = Field(default_factory=list)
    pending_requests: list[MemberRead] = Field(default_factory=list)


class JoinRequestStatus(_CamelModel):
    status: Literal["already_member", "pending"]


class LeaveResult(_CamelModel):
    channel_id: str
    left: bool


class PresenceSnapshot(_CamelModel):
    online: list[str] = Field(default_factory=list)
