"""Per-connection reactions to inbound realtime actions."""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, TypeVar

from app.monitoring.metrics import realtime_ack_failures_total, realtime_events_total

from .connection import Connection
from .dispatcher import EventDispatcher
from .errors import (
    ChatError,
    Forbidden,
    InvalidPayload,
    NotFound,
    PersistenceFailure,
    PersistenceTimeout,
    Unauthenticated,
)
from .registry import ConnectionRegistry
from .rooms import RoomMembershipTracker
from .schemas import ChannelRef, DeleteMessage, EditMessage, NewMessage, parse_payload
from .store import ChatStore, MessageRecord
from .typing_state import TypingEntry, TypingState

logger = logging.getLogger(__name__)

T = TypeVar("T")

AckCallback = Callable[[dict[str, Any]], Awaitable[Any]]
Handler = Callable[[Connection, Any, AckCallback | None], Awaitable[dict[str, Any]]]


class Acknowledgment:
    """One-shot response for a client-initiated action.

    Resolving twice is ignored, so every recognised error path can resolve
    without checking whether an earlier path already did.
    """

    def __init__(self, event: str, callback: AckCallback | None) -> None:
        self.event = event
        self._callback = callback
        self._result: dict[str, Any] | None = None

    @property
    def resolved(self) -> bool:
        return self._result is not None

    async def succeed(self, **data: Any) -> dict[str, Any]:
        return await self._resolve({"ok": True, **data})

    async def fail(self, error: str) -> dict[str, Any]:
        return await self._resolve({"ok": False, "error": error})

    async def _resolve(self, result: dict[str, Any]) -> dict[str, Any]:
        if self._result is not None:
            return self._result
        self._result = result
        if self._callback is not None:
            try:
                await self._callback(result)
            except Exception:
                logger.warning(
                    "Failed to deliver acknowledgment", exc_info=True, extra={"event": self.event}
                )
        return result


@dataclass(slots=True)
class ReleasedConnection:
    rooms: list[str]
    typing: list[TypingEntry]
    went_offline: bool


def _require(value: str | None, message: str) -> str:
    if not value:
        raise InvalidPayload(message)
    return value


class ChannelEventHandlers:
    """State machine driving joins, typing, messages and connection teardown.

    Registry and tracker mutations are synchronous; only persistence calls
    suspend, each bounded by ``persistence_timeout``.
    """

    def __init__(
        self,
        *,
        registry: ConnectionRegistry,
        rooms: RoomMembershipTracker,
        dispatcher: EventDispatcher,
        typing: TypingState,
        store: ChatStore,
        persistence_timeout: float | None = 10.0,
        grant_private_membership: bool = False,
        message_max_length: int | None = None,
    ) -> None:
        self._registry = registry
        self._rooms = rooms
        self._dispatcher = dispatcher
        self._typing = typing
        self._store = store
        self._timeout = persistence_timeout or None
        self._grant_private = grant_private_membership
        self._max_length = message_max_length
        self._late_tasks: set[asyncio.Future] = set()
        self.routes: Dict[str, Handler] = {
            "channel:join": self.join_room,
            "channel:leave": self.leave_room,
            "typing:start": self.typing_start,
            "typing:stop": self.typing_stop,
            "message:new": self.message_new,
            "message:edit": self.message_edit,
            "message:delete": self.message_delete,
        }

    # ------------------------------------------------------------------
    # Public handlers
    # ------------------------------------------------------------------
    async def join_room(
        self, connection: Connection, payload: Any, ack: AckCallback | None = None
    ) -> dict[str, Any]:
        return await self._acked("channel:join", ack, self._join_room(connection, payload))

    async def leave_room(
        self, connection: Connection, payload: Any, ack: AckCallback | None = None
    ) -> dict[str, Any]:
        return await self._acked("channel:leave", ack, self._leave_room(connection, payload))

    async def typing_start(
        self, connection: Connection, payload: Any, ack: AckCallback | None = None
    ) -> dict[str, Any]:
        return await self._acked("typing:start", ack, self._typing_event(connection, payload, True))

    async def typing_stop(
        self, connection: Connection, payload: Any, ack: AckCallback | None = None
    ) -> dict[str, Any]:
        return await self._acked("typing:stop", ack, self._typing_event(connection, payload, False))

    async def message_new(
        self, connection: Connection, payload: Any, ack: AckCallback | None = None
    ) -> dict[str, Any]:
        return await self._acked("message:new", ack, self._message_new(connection, payload))

    async def message_edit(
        self, connection: Connection, payload: Any, ack: AckCallback | None = None
    ) -> dict[str, Any]:
        return await self._acked("message:edit", ack, self._message_edit(connection, payload))

    async def message_delete(
        self, connection: Connection, payload: Any, ack: AckCallback | None = None
    ) -> dict[str, Any]:
        return await self._acked("message:delete", ack, self._message_delete(connection, payload))

    async def connection_close(self, connection: Connection) -> bool:
        """Release every transient structure held for *connection*.

        Runs at most once per connection and never raises. Returns False when
        the connection was already closed.
        """

        released = self.release_connection(connection)
        if released is None:
            return False
        await self.announce_release(connection, released)
        return True

    def release_connection(self, connection: Connection) -> ReleasedConnection | None:
        """Drop *connection* from the registry, rooms, typing state and dispatcher.

        Nothing here suspends, so a cancelled close cannot leave the user
        registered. Returns None when the connection was already released.
        """

        if connection.closed:
            return None
        connection.closed = True

        rooms = self._rooms.leave_all(connection.id)
        typing = self._typing.clear_connection(connection.id)
        self._dispatcher.discard(connection.id)
        went_offline = False
        if connection.user_id:
            went_offline = self._registry.unregister(connection.user_id, connection.id)

        logger.debug(
            "Connection released",
            extra={"connection_id": connection.id, "user_id": connection.user_id, "rooms": rooms},
        )
        return ReleasedConnection(rooms=rooms, typing=typing, went_offline=went_offline)

    async def announce_release(self, connection: Connection, released: ReleasedConnection) -> None:
        """Tell the remaining peers that typing stopped and, if so, that the user went offline."""

        try:
            for entry in released.typing:
                await self._dispatcher.to_room(
                    entry.channel_id, "typing:stopped", self._typing_payload(connection, entry)
                )
            if released.went_offline and connection.user_id:
                await self._dispatcher.publish_presence(connection.user_id, False)
        except Exception:
            logger.exception("Failed to announce closed connection", extra={"connection_id": connection.id})

    # ------------------------------------------------------------------
    # Handler bodies
    # ------------------------------------------------------------------
    async def _join_room(self, connection: Connection, payload: Any) -> dict[str, Any]:
        ref = parse_payload(ChannelRef, payload)
        channel_id = _require(ref.channel_id, "channelId required")
        self._rooms.join(channel_id, connection.id)
        logger.debug(
            "Connection joined room",
            extra={"connection_id": connection.id, "channel_id": channel_id, "user_id": connection.user_id},
        )

        member = False
        if connection.user_id:
            member = await self._grant_membership(channel_id, connection.user_id)

        await self._dispatcher.to_room(channel_id, "channel:members:updated", {"channelId": channel_id})
        return {"channelId": channel_id, "member": member}

    async def _grant_membership(self, channel_id: str, user_id: str) -> bool:
        channel = await self._persist(self._store.get_channel(channel_id))
        if channel is None:
            return False
        if channel.has_member(user_id):
            return True
        if channel.is_private and not self._grant_private:
            logger.info(
                "Realtime join on private channel did not grant membership",
                extra={"channel_id": channel_id, "user_id": user_id},
            )
            return False
        await self._persist(self._store.add_member(channel_id, user_id))
        return True

    async def _leave_room(self, connection: Connection, payload: Any) -> dict[str, Any]:
        ref = parse_payload(ChannelRef, payload)
        channel_id = _require(ref.channel_id, "channelId required")
        self._rooms.leave(channel_id, connection.id)
        for entry in self._typing.clear_connection(connection.id, channel_id=channel_id):
            await self._dispatcher.to_room(
                channel_id, "typing:stopped", self._typing_payload(connection, entry)
            )
        await self._dispatcher.to_room(channel_id, "channel:members:updated", {"channelId": channel_id})
        return {"channelId": channel_id}

    async def _typing_event(
        self, connection: Connection, payload: Any, started: bool
    ) -> dict[str, Any]:
        user_id = self._require_user(connection)
        ref = parse_payload(ChannelRef, payload)
        channel_id = _require(ref.channel_id, "channelId required")
        if started:
            self._typing.start(channel_id, user_id, connection.id)
            event = "typing:started"
        else:
            self._typing.stop(channel_id, user_id)
            event = "typing:stopped"
        body = {"channelId": channel_id, "userId": user_id, "userName": connection.display_name}
        await self._dispatcher.to_room(channel_id, event, body)
        return {"channelId": channel_id}

    async def _message_new(self, connection: Connection, payload: Any) -> dict[str, Any]:
        user_id = self._require_user(connection)
        body = parse_payload(NewMessage, payload)
        channel_id = _require(body.channel_id, "channelId required")
        self._check_length(body.text)

        channel = await self._persist(self._store.get_channel(channel_id))
        if channel is None:
            raise NotFound("Channel not found")

        async def deliver_late(late: MessageRecord) -> None:
            await self._dispatcher.to_room(
                channel_id, "message:received", self._materialize(connection, late)
            )

        record = await self._persist(
            self._store.create_message(
                channel_id=channel_id,
                sender_id=user_id,
                text=body.text,
                attachments=body.attachments,
                client_id=body.client_id,
            ),
            on_late=deliver_late,
        )
        message = self._materialize(connection, record)
        await self._dispatcher.to_room(channel_id, "message:received", message)
        return {"message": message}

    async def _message_edit(self, connection: Connection, payload: Any) -> dict[str, Any]:
        user_id = self._require_user(connection)
        body = parse_payload(EditMessage, payload)
        message_id = _require(body.message_id, "messageId required")
        if body.text is None:
            raise InvalidPayload("text required")
        self._check_length(body.text)

        existing = await self._persist(self._store.get_message(message_id))
        if existing is None or existing.deleted:
            raise NotFound("Message not found")
        if existing.sender_id != user_id:
            raise Forbidden()

        record = await self._persist(
            self._store.update_message_text(message_id, body.text, datetime.now(timezone.utc))
        )
        message = self._materialize(connection, record)
        await self._dispatcher.to_room(record.channel_id, "message:edited", message)
        return {"message": message}

    async def _message_delete(self, connection: Connection, payload: Any) -> dict[str, Any]:
        user_id = self._require_user(connection)
        body = parse_payload(DeleteMessage, payload)
        message_id = _require(body.message_id, "messageId required")

        existing = await self._persist(self._store.get_message(message_id))
        if existing is None:
            raise NotFound("Message not found")
        if existing.sender_id != user_id:
            channel = await self._persist(self._store.get_channel(existing.channel_id))
            if channel is None or channel.created_by != user_id:
                raise Forbidden()

        record = await self._persist(self._store.mark_message_deleted(message_id))
        await self._dispatcher.to_room(
            record.channel_id,
            "message:deleted",
            {"messageId": record.id, "channelId": record.channel_id},
        )
        return {"messageId": record.id}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _acked(
        self, event: str, callback: AckCallback | None, work: Awaitable[dict[str, Any]]
    ) -> dict[str, Any]:
        ack = Acknowledgment(event, callback)
        realtime_events_total.labels(event, "in").inc()
        try:
            data = await work
        except ChatError as exc:
            realtime_ack_failures_total.labels(event, exc.reason).inc()
            logger.debug("Realtime action rejected", extra={"event": event, "error": exc.message})
            return await ack.fail(exc.message)
        except Exception:
            realtime_ack_failures_total.labels(event, "internal").inc()
            logger.exception("Realtime handler crashed", extra={"event": event})
            return await ack.fail("Internal server error")
        return await ack.succeed(**data)

    async def _persist(
        self,
        operation: Awaitable[T],
        *,
        on_late: Callable[[T], Awaitable[Any]] | None = None,
    ) -> T:
        """Await a store call for at most ``persistence_timeout`` seconds.

        A timed out call is not cancelled: worker threads cannot be stopped,
        so the write may still land. When it does, *on_late* receives the
        result.
        """

        task = asyncio.ensure_future(operation)
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Persistence call timed out after %ss", self._timeout)
            task.add_done_callback(functools.partial(self._finish_late, on_late=on_late))
            raise PersistenceTimeout() from exc
        except ChatError:
            raise
        except Exception as exc:
            logger.exception("Persistence call failed")
            raise PersistenceFailure() from exc

    def _finish_late(
        self, task: asyncio.Future, *, on_late: Callable[[Any], Awaitable[Any]] | None
    ) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Timed out persistence call failed", exc_info=exc)
            return
        logger.info("Timed out persistence call completed")
        if on_late is None:
            return
        follow_up = asyncio.ensure_future(on_late(task.result()))
        self._late_tasks.add(follow_up)
        follow_up.add_done_callback(self._late_tasks.discard)

    @staticmethod
    def _require_user(connection: Connection) -> str:
        user_id = connection.user_id
        if not user_id:
            raise Unauthenticated()
        return user_id

    def _check_length(self, text: str) -> None:
        if self._max_length is not None and len(text) > self._max_length:
            raise InvalidPayload(
                f"Message exceeds maximum length of {self._max_length} characters"
            )

    @staticmethod
    def _materialize(connection: Connection, record: MessageRecord) -> dict[str, Any]:
        if record.sender_name is None and record.sender_id == connection.user_id:
            record = record.model_copy(update={"sender_name": connection.display_name})
        return record.to_payload()

    @staticmethod
    def _typing_payload(connection: Connection, entry: TypingEntry) -> dict[str, Any]:
        return {
            "channelId": entry.channel_id,
            "userId": entry.user_id,
            "userName": connection.display_name,
        }
