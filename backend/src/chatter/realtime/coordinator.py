"""Realtime coordinator owning all connection state for this process."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from app.config import Settings, get_settings
from app.monitoring.metrics import realtime_connections

from .auth import CredentialVerifier, SessionAuthenticator
from .connection import Connection, Identity
from .dispatcher import EventDispatcher
from .errors import TransportUnavailableError
from .handlers import AckCallback, ChannelEventHandlers
from .registry import ConnectionRegistry
from .rooms import RoomMembershipTracker
from .store import ChatStore
from .typing_state import TypingState

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from sqlalchemy.orm import Session, sessionmaker


logger = logging.getLogger(__name__)


class RealtimeCoordinator:
    """Single owner of the registry, room tracker and typing state.

    Only the handlers mutate those structures and only the dispatcher reads
    them. Scale-out would replace the dispatcher with a broker-backed one.
    """

    def __init__(
        self,
        store: ChatStore,
        verifier: CredentialVerifier,
        *,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.store = store
        self.registry = ConnectionRegistry()
        self.rooms = RoomMembershipTracker()
        self.typing = TypingState()
        self.dispatcher = EventDispatcher(self.registry, self.rooms)
        self.authenticator = SessionAuthenticator(verifier)
        self.handlers = ChannelEventHandlers(
            registry=self.registry,
            rooms=self.rooms,
            dispatcher=self.dispatcher,
            typing=self.typing,
            store=store,
            persistence_timeout=settings.realtime_persistence_timeout_seconds,
            grant_private_membership=settings.realtime_join_grants_private_membership,
            message_max_length=settings.chat_message_max_length,
        )

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    async def open_connection(self, connection: Connection, token: str | None) -> Identity | None:
        """Authenticate *connection*, make it reachable and announce presence."""

        identity = self.authenticator.authenticate(connection, token)
        self.dispatcher.add(connection)
        realtime_connections.labels("authenticated" if identity else "anonymous").inc()
        if identity is not None and self.registry.register(identity.user_id, connection.id):
            await self.dispatcher.publish_presence(identity.user_id, True)
        logger.info(
            "Realtime connection opened",
            extra={"connection_id": connection.id, "user_id": connection.user_id or "anonymous"},
        )
        return identity

    async def close_connection(self, connection: Connection) -> None:
        released = self.handlers.release_connection(connection)
        if released is None:
            return
        realtime_connections.labels(
            "authenticated" if connection.authenticated else "anonymous"
        ).dec()
        logger.info(
            "Realtime connection closed",
            extra={"connection_id": connection.id, "user_id": connection.user_id or "anonymous"},
        )
        await self.handlers.announce_release(connection, released)

    def close_room(self, room_id: str) -> list[str]:
        """Unsubscribe every connection from *room_id* and drop its typing state."""

        connection_ids = self.rooms.close(room_id)
        self.typing.clear_channel(room_id)
        return connection_ids

    async def handle_event(
        self,
        connection: Connection,
        event: str,
        payload: Any,
        ack: AckCallback | None = None,
    ) -> dict[str, Any] | None:
        """Route an inbound action; returns None for unknown events."""

        handler = self.handlers.routes.get(event)
        if handler is None:
            return None
        return await handler(connection, payload, ack)

    # ------------------------------------------------------------------
    # Fan-out used by the HTTP layer
    # ------------------------------------------------------------------
    async def to_room(self, room_id: str, event: str, payload: Any) -> int:
        return await self.dispatcher.to_room(room_id, event, payload)

    async def to_user(self, user_id: str, event: str, payload: Any) -> int:
        return await self.dispatcher.to_user(user_id, event, payload)

    async def broadcast_all(self, event: str, payload: Any) -> int:
        return await self.dispatcher.broadcast_all(event, payload)

    def is_online(self, user_id: str) -> bool:
        return self.registry.is_online(user_id)

    def online_users(self) -> list[str]:
        return self.registry.online_users()


# ---------------------------------------------------------------------------
# Module level lifecycle helpers
# ---------------------------------------------------------------------------


_coordinator: RealtimeCoordinator | None = None


def configure_realtime(
    store: ChatStore | None = None,
    verifier: CredentialVerifier | None = None,
    *,
    settings: Settings | None = None,
    session_factory: "sessionmaker[Session] | None" = None,
) -> RealtimeCoordinator:
    """Build the process-wide coordinator, defaulting to the SQL collaborators."""

    global _coordinator
    settings = settings or get_settings()
    if store is None:
        from app.services.chat_store import SqlChatStore

        store = SqlChatStore(session_factory)
    if verifier is None:
        from app.services.verifier import JwtCredentialVerifier

        verifier = JwtCredentialVerifier()
    _coordinator = RealtimeCoordinator(store, verifier, settings=settings)
    return _coordinator


def get_coordinator() -> RealtimeCoordinator:
    if _coordinator is None:
        raise TransportUnavailableError(
            "Realtime transport subsystem not initialized. Call startup_realtime() first."
        )
    return _coordinator


def reset_realtime() -> None:
    global _coordinator
    _coordinator = None


async def startup_realtime() -> None:
    if _coordinator is None:
        configure_realtime()
    logger.info("Realtime coordinator ready")


async def shutdown_realtime() -> None:
    coordinator = _coordinator
    if coordinator is None:
        return
    logger.info(
        "Realtime coordinator shutting down",
        extra={"open_connections": coordinator.dispatcher.open_count()},
    )
    reset_realtime()
