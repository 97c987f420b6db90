"""Transient typing indicators keyed by (channel, user)."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass(slots=True)
class TypingEntry:
    channel_id: str
    user_id: str
    connection_id: str
    started_at: float


class TypingState:
    """Who is currently typing where.

    Repeated starts refresh the entry; the caller re-broadcasts regardless.
    """

    def __init__(self) -> None:
        self._entries: Dict[Tuple[str, str], TypingEntry] = {}

    def start(self, channel_id: str, user_id: str, connection_id: str) -> TypingEntry:
        entry = TypingEntry(
            channel_id=channel_id,
            user_id=user_id,
            connection_id=connection_id,
            started_at=time.monotonic(),
        )
        self._entries[(channel_id, user_id)] = entry
        return entry

    def stop(self, channel_id: str, user_id: str) -> TypingEntry | None:
        return self._entries.pop((channel_id, user_id), None)

    def clear_connection(
        self, connection_id: str, *, channel_id: str | None = None
    ) -> list[TypingEntry]:
        """Remove entries started from *connection_id*, optionally in one channel."""

        removed = [
            entry
            for entry in self._entries.values()
            if entry.connection_id == connection_id
            and (channel_id is None or entry.channel_id == channel_id)
        ]
        for entry in removed:
            self._entries.pop((entry.channel_id, entry.user_id), None)
        return removed

    def clear_channel(self, channel_id: str) -> list[TypingEntry]:
        removed = [entry for entry in self._entries.values() if entry.channel_id == channel_id]
        for entry in removed:
            self._entries.pop((entry.channel_id, entry.user_id), None)
        return removed

    def is_typing(self, channel_id: str, user_id: str) -> bool:
        return (channel_id, user_id) in self._entries

    def typing_users(self, channel_id: str) -> list[str]:
        return sorted(user_id for (channel, user_id) in self._entries if channel == channel_id)
