"""Application service helpers."""

from .chat_store import SqlChatStore
from .membership import MembershipService
from .verifier import JwtCredentialVerifier

__all__ = [
    "SqlChatStore",
    "MembershipService",
    "JwtCredentialVerifier",
]
