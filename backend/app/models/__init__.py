"""Database models package."""

from .base import Base
from .chat import Channel, ChannelJoinRequest, ChannelMember, Message, User

__all__ = [
    "Base",
    "User",
    "Channel",
    "ChannelMember",
    "ChannelJoinRequest",
    "Message",
]
