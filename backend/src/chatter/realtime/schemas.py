"""Inbound realtime payloads."""

from __future__ import annotations

from typing import Annotated, Any, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .errors import InvalidPayload
from .store import Attachment


def _coerce_identifier(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValueError("identifier must be a string")
    text = str(value).strip()
    return text or None


Identifier = Annotated[str | None, BeforeValidator(_coerce_identifier)]


class _InboundPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ChannelRef(_InboundPayload):
    """Payload of ``channel:join``, ``channel:leave`` and typing events."""

    channel_id: Identifier = None


class NewMessage(_InboundPayload):
    channel_id: Identifier = None
    text: str = ""
    attachments: list[Attachment] = []
    client_id: Identifier = None

    @field_validator("text", "attachments", mode="before")
    @classmethod
    def empty_when_null(cls, value: Any, info) -> Any:
        if value is None:
            return "" if info.field_name == "text" else []
        return value


class EditMessage(_InboundPayload):
    message_id: Identifier = None
    text: str | None = None


class DeleteMessage(_InboundPayload):
    message_id: Identifier = None


PayloadT = TypeVar("PayloadT", bound=_InboundPayload)


def parse_payload(model: type[PayloadT], raw: Any) -> PayloadT:
    """Validate *raw* against *model*, raising :class:`InvalidPayload`."""

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise InvalidPayload("Payload must be a JSON object")
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ())) or "payload"
        raise InvalidPayload(f"Invalid {location}: {first.get('msg', 'invalid value')}") from exc
