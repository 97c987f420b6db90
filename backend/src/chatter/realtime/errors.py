"""Error taxonomy shared by the realtime handlers and the HTTP layer."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for recognised failures reported back to clients."""

    default_message = "Request failed"
    reason = "error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(ChatError):
    """An action requiring a bound user id was attempted anonymously."""

    default_message = "Unauthorized (socket)"
    reason = "unauthenticated"


class InvalidPayload(ChatError):
    """The inbound payload is missing a field or has the wrong shape."""

    default_message = "Invalid payload"
    reason = "invalid"


class NotFound(ChatError):
    default_message = "Not found"
    reason = "not_found"


class Forbidden(ChatError):
    default_message = "Forbidden"
    reason = "forbidden"


class PersistenceFailure(ChatError):
    """The storage collaborator rejected the operation.

    The original error is logged server-side; clients only see the generic
    message.
    """

    default_message = "Storage unavailable"
    reason = "persistence"


class PersistenceTimeout(PersistenceFailure):
    default_message = "Request timed out"
    reason = "timeout"


class TransportUnavailableError(RuntimeError):
    """Raised when the realtime transport has not been initialised."""
