"""JWT-backed credential verifier for websocket handshakes."""

from __future__ import annotations

from chatter.realtime.connection import Identity

from app.core.security import read_token_claims, token_subject


class JwtCredentialVerifier:
    """Resolve ``{userId, name}`` from a signed access token."""

    def verify(self, token: str) -> Identity | None:
        claims = read_token_claims(token)
        if not claims:
            return None
        user_id = token_subject(claims)
        if user_id is None:
            return None
        name = claims.get("name") or claims.get("username")
        return Identity(user_id=user_id, name=str(name) if name else None)
