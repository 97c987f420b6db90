"""Pydantic schemas for API payloads."""

from .channels import (
    ChannelCreate,
    ChannelMembersRead,
    ChannelRead,
    JoinRequestStatus,
    LeaveResult,
    MemberRead,
    PresenceSnapshot,
)

__all__ = [
    "ChannelCreate",
    "ChannelRead",
    "ChannelMembersRead",
    "JoinRequestStatus",
    "LeaveResult",
    "MemberRead",
    "PresenceSnapshot",
]
