"""Handshake authentication for realtime connections."""

from __future__ import annotations

import logging
from typing import Protocol

from .connection import Connection, Identity

logger = logging.getLogger(__name__)


class CredentialVerifier(Protocol):
    def verify(self, token: str) -> Identity | None: ...


class SessionAuthenticator:
    """Resolve the identity carried by a connection-open token.

    Connections are never rejected here: a missing, invalid or unverifiable
    token leaves the connection anonymous.
    """

    def __init__(self, verifier: CredentialVerifier) -> None:
        self._verifier = verifier

    def authenticate(self, connection: Connection, token: str | None) -> Identity | None:
        if not token:
            return None
        try:
            identity = self._verifier.verify(token)
        except Exception:
            logger.warning(
                "Credential verification failed; continuing anonymously",
                exc_info=logger.isEnabledFor(logging.DEBUG),
                extra={"connection_id": connection.id},
            )
            return None
        if identity is None or not identity.user_id:
            return None
        connection.bind(identity)
        return identity
