"""SQLAlchemy implementation of the realtime persistence collaborator."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Sequence, TypeVar

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from chatter.realtime.errors import NotFound, PersistenceFailure
from chatter.realtime.store import Attachment, ChannelRecord, MemberRecord, MessageRecord

from app.database import SessionLocal, get_db_session
from app.models import Channel, ChannelJoinRequest, ChannelMember, Message, User

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _channel_record(channel: Channel) -> ChannelRecord:
    return ChannelRecord(
        id=channel.id,
        name=channel.name,
        created_by=channel.created_by,
        is_private=bool(channel.is_private),
        member_ids=frozenset(member.user_id for member in channel.members),
        pending_ids=frozenset(request.user_id for request in channel.join_requests),
    )


def _message_record(message: Message) -> MessageRecord:
    return MessageRecord(
        id=message.id,
        channel_id=message.channel_id,
        sender_id=message.sender_id,
        sender_name=message.sender.name if message.sender is not None else None,
        text=message.text or "",
        attachments=[Attachment.model_validate(item) for item in message.attachments or []],
        client_id=message.client_id,
        created_at=message.created_at,
        edited_at=message.edited_at,
        deleted=bool(message.deleted),
    )


class SqlChatStore:
    """Durable channel/message records.

    Each call opens a short-lived session in the threadpool so the event loop
    keeps serving other connections while the database works.
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._factory = session_factory or SessionLocal

    async def _call(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return await run_in_threadpool(self._run, operation, *args, **kwargs)

    def _run(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        with get_db_session(self._factory) as db:
            try:
                return operation(db, *args, **kwargs)
            except SQLAlchemyError as exc:
                db.rollback()
                logger.exception(
                    "Database operation failed", extra={"operation": operation.__name__}
                )
                raise PersistenceFailure() from exc

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------
    async def get_channel(self, channel_id: str) -> ChannelRecord | None:
        return await self._call(_get_channel, channel_id)

    async def create_channel(
        self, *, name: str, created_by: str, is_private: bool
    ) -> ChannelRecord:
        return await self._call(_create_channel, name, created_by, is_private)

    async def delete_channel(self, channel_id: str) -> bool:
        return await self._call(_delete_channel, channel_id)

    async def add_member(self, channel_id: str, user_id: str) -> bool:
        return await self._call(_add_member, channel_id, user_id)

    async def remove_member(self, channel_id: str, user_id: str) -> bool:
        return await self._call(_remove_row, ChannelMember, channel_id, user_id)

    async def add_join_request(self, channel_id: str, user_id: str) -> bool:
        return await self._call(_add_join_request, channel_id, user_id)

    async def remove_join_request(self, channel_id: str, user_id: str) -> bool:
        return await self._call(_remove_row, ChannelJoinRequest, channel_id, user_id)

    async def get_members(self, user_ids: Sequence[str]) -> list[MemberRecord]:
        return await self._call(_get_members, list(user_ids))

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------
    async def create_message(
        self,
        *,
        channel_id: str,
        sender_id: str,
        text: str,
        attachments: Sequence[Attachment],
        client_id: str | None,
    ) -> MessageRecord:
        return await self._call(
            _create_message,
            channel_id=channel_id,
            sender_id=sender_id,
            text=text,
            attachments=[attachment.model_dump(by_alias=True) for attachment in attachments],
            client_id=client_id,
        )

    async def get_message(self, message_id: str) -> MessageRecord | None:
        return await self._call(_get_message, message_id)

    async def update_message_text(
        self, message_id: str, text: str, edited_at: datetime
    ) -> MessageRecord:
        return await self._call(_update_message, message_id, text=text, edited_at=edited_at)

    async def mark_message_deleted(self, message_id: str) -> MessageRecord:
        return await self._call(_update_message, message_id, deleted=True)


# ---------------------------------------------------------------------------
# Session-bound operations (run inside the threadpool)
# ---------------------------------------------------------------------------


def _get_channel(db: Session, channel_id: str) -> ChannelRecord | None:
    channel = db.get(Channel, channel_id)
    return _channel_record(channel) if channel is not None else None


def _create_channel(db: Session, name: str, created_by: str, is_private: bool) -> ChannelRecord:
    channel = Channel(name=name, created_by=created_by, is_private=is_private)
    channel.members.append(ChannelMember(user_id=created_by))
    db.add(channel)
    db.commit()
    db.refresh(channel)
    return _channel_record(channel)


def _delete_channel(db: Session, channel_id: str) -> bool:
    channel = db.get(Channel, channel_id)
    if channel is None:
        return False
    db.delete(channel)
    db.commit()
    return True


def _add_member(db: Session, channel_id: str, user_id: str) -> bool:
    if db.get(Channel, channel_id) is None:
        raise NotFound("Channel not found")
    existing = db.execute(
        select(ChannelMember.id).where(
            ChannelMember.channel_id == channel_id, ChannelMember.user_id == user_id
        )
    ).scalar_one_or_none()
    if existing is not None:
        return False
    db.add(ChannelMember(channel_id=channel_id, user_id=user_id))
    try:
        db.commit()
    except IntegrityError:
        # Concurrent join already inserted the row
        db.rollback()
        return False
    return True


def _add_join_request(db: Session, channel_id: str, user_id: str) -> bool:
    existing = db.execute(
        select(ChannelJoinRequest.id).where(
            ChannelJoinRequest.channel_id == channel_id, ChannelJoinRequest.user_id == user_id
        )
    ).scalar_one_or_none()
    if existing is not None:
        return False
    db.add(ChannelJoinRequest(channel_id=channel_id, user_id=user_id))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return False
    return True


def _remove_row(
    db: Session, model: type[ChannelMember] | type[ChannelJoinRequest], channel_id: str, user_id: str
) -> bool:
    result = db.execute(
        delete(model).where(model.channel_id == channel_id, model.user_id == user_id)
    )
    db.commit()
    return bool(result.rowcount)


def _get_members(db: Session, user_ids: list[str]) -> list[MemberRecord]:
    if not user_ids:
        return []
    users = db.execute(select(User).where(User.id.in_(user_ids))).scalars().all()
    records = [
        MemberRecord(id=user.id, name=user.name, email=user.email, avatar_url=user.avatar_url)
        for user in users
    ]
    records.sort(key=lambda record: record.name.lower())
    return records


def _create_message(
    db: Session,
    *,
    channel_id: str,
    sender_id: str,
    text: str,
    attachments: list[dict[str, Any]],
    client_id: str | None,
) -> MessageRecord:
    message = Message(
        channel_id=channel_id,
        sender_id=sender_id,
        text=text,
        attachments=attachments,
        client_id=client_id,
        created_at=datetime.now(timezone.utc),
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    return _message_record(message)


def _get_message(db: Session, message_id: str) -> MessageRecord | None:
    message = db.get(Message, message_id)
    return _message_record(message) if message is not None else None


def _update_message(db: Session, message_id: str, **changes: Any) -> MessageRecord:
    message = db.get(Message, message_id)
    if message is None:
        raise NotFound("Message not found")
    for field_name, value in changes.items():
        setattr(message, field_name, value)
    db.commit()
    db.refresh(message)
    return _message_record(message)
