"""Realtime session and room-membership coordination."""

from .connection import Connection, Identity  # noqa: F401
from .coordinator import (  # noqa: F401
    RealtimeCoordinator,
    configure_realtime,
    get_coordinator,
    reset_realtime,
    shutdown_realtime,
    startup_realtime,
)
from .errors import TransportUnavailableError  # noqa: F401

__all__ = [
    "configure_realtime",
    "startup_realtime",
    "shutdown_realtime",
    "reset_realtime",
    "get_coordinator",
    "Connection",
    "Identity",
    "RealtimeCoordinator",
    "TransportUnavailableError",
]
