"""Channel membership workflow shared by the REST endpoints."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

from chatter.realtime import RealtimeCoordinator, TransportUnavailableError, get_coordinator
from chatter.realtime.errors import Forbidden, InvalidPayload, NotFound
from chatter.realtime.store import ChannelRecord, ChatStore, MemberRecord

logger = logging.getLogger(__name__)

JoinRequestStatus = Literal["already_member", "pending"]


@dataclass(slots=True)
class ChannelMembers:
    channel: ChannelRecord
    members: list[MemberRecord]
    pending_requests: list[MemberRecord]


class MembershipService:
    """Persist membership changes, then notify the affected sockets.

    Notifications are best effort: once the store has accepted a change the
    request succeeds even if the realtime layer is down.
    """

    def __init__(self, store: ChatStore, coordinator: RealtimeCoordinator | None = None) -> None:
        self._store = store
        self._coordinator = coordinator

    async def create_channel(self, user_id: str, name: str | None, *, is_private: bool = True) -> ChannelRecord:
        name = (name or "").strip()
        if not name:
            raise InvalidPayload("Channel name required")
        channel = await self._store.create_channel(name=name, created_by=user_id, is_private=is_private)
        logger.info("Channel created", extra={"channel_id": channel.id, "user_id": user_id})
        return channel

    async def join_channel(self, channel_id: str, user_id: str) -> ChannelRecord:
        channel = await self._require_channel(channel_id)
        if channel.has_member(user_id):
            return channel
        if channel.is_private:
            raise Forbidden("Channel is private")
        if await self._store.add_member(channel_id, user_id):
            await self._emit("room", channel_id, "channel:members:updated", {"channelId": channel_id})
        return await self._require_channel(channel_id)

    async def request_join(self, channel_id: str, user_id: str, user_name: str | None) -> JoinRequestStatus:
        channel = await self._require_channel(channel_id)
        if channel.has_member(user_id):
            return "already_member"
        if channel.has_pending(user_id):
            return "pending"
        await self._store.add_join_request(channel_id, user_id)
        await self._emit(
            "user",
            channel.created_by,
            "channel:joinRequest",
            {
                "channelId": channel_id,
                "channelName": channel.name,
                "requester": {"_id": user_id, "name": user_name},
            },
        )
        return "pending"

    async def approve_request(self, channel_id: str, approver_id: str, user_id: str) -> ChannelRecord:
        channel = await self._require_channel(channel_id)
        self._require_creator(channel, approver_id, "Only creator can approve requests")
        if not channel.has_pending(user_id):
            raise NotFound("Join request not found")
        await self._store.remove_join_request(channel_id, user_id)
        await self._store.add_member(channel_id, user_id)
        await self._emit(
            "user",
            user_id,
            "channel:request:approved",
            {"channelId": channel_id, "channelName": channel.name, "userId": user_id},
        )
        await self._emit("room", channel_id, "channel:members:updated", {"channelId": channel_id})
        return await self._require_channel(channel_id)

    async def reject_request(self, channel_id: str, approver_id: str, user_id: str) -> None:
        channel = await self._require_channel(channel_id)
        self._require_creator(channel, approver_id, "Only creator can reject requests")
        if not await self._store.remove_join_request(channel_id, user_id):
            raise NotFound("Join request not found")
        await self._emit(
            "user",
            user_id,
            "channel:request:rejected",
            {"channelId": channel_id, "channelName": channel.name, "userId": user_id},
        )

    async def leave_channel(self, channel_id: str, user_id: str) -> bool:
        await self._require_channel(channel_id)
        if not await self._store.remove_member(channel_id, user_id):
            return False
        await self._emit("room", channel_id, "channel:members:updated", {"channelId": channel_id})
        await self._emit(
            "room", channel_id, "channel:member:left", {"channelId": channel_id, "userId": user_id}
        )
        return True

    async def remove_member(self, channel_id: str, actor_id: str, user_id: str) -> None:
        channel = await self._require_channel(channel_id)
        self._require_creator(channel, actor_id, "Only creator can remove members")
        if user_id == actor_id:
            raise InvalidPayload("Channel creator cannot remove themselves")
        if not await self._store.remove_member(channel_id, user_id):
            raise NotFound("Member not found")
        await self._emit("user", user_id, "channel:removed", {"channelId": channel_id})
        await self._emit("room", channel_id, "channel:members:updated", {"channelId": channel_id})

    async def delete_channel(self, channel_id: str, user_id: str) -> None:
        channel = await self._require_channel(channel_id)
        self._require_creator(channel, user_id, "Only the channel creator can delete the channel")
        await self._store.delete_channel(channel_id)
        logger.info("Channel deleted", extra={"channel_id": channel_id, "user_id": user_id})
        await self._emit("all", None, "channel:deleted", {"channelId": channel_id})
        self._close_room(channel_id)

    async def list_members(self, channel_id: str) -> ChannelMembers:
        channel = await self._require_channel(channel_id)
        members = await self._store.get_members(sorted(channel.member_ids))
        pending = await self._store.get_members(sorted(channel.pending_ids))
        return ChannelMembers(channel=channel, members=members, pending_requests=pending)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _require_channel(self, channel_id: str) -> ChannelRecord:
        channel = await self._store.get_channel(channel_id)
        if channel is None:
            raise NotFound("Channel not found")
        return channel

    @staticmethod
    def _require_creator(channel: ChannelRecord, user_id: str, message: str) -> None:
        if channel.created_by != user_id:
            raise Forbidden(message)

    def _close_room(self, channel_id: str) -> None:
        try:
            coordinator = self._coordinator or get_coordinator()
        except TransportUnavailableError:
            return
        coordinator.close_room(channel_id)

    async def _emit(self, scope: str, target: str | None, event: str, payload: dict[str, Any]) -> int:
        try:
            coordinator = self._coordinator or get_coordinator()
            if scope == "room":
                return await coordinator.to_room(target, event, payload)
            if scope == "user":
                return await coordinator.to_user(target, event, payload)
            return await coordinator.broadcast_all(event, payload)
        except TransportUnavailableError:
            logger.warning(
                "Realtime transport unavailable; skipping notification",
                extra={"event": event, "scope": scope, "target": target},
            )
            return 0
