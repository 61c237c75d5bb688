"""Queue messages — the four kinds of work the dispatcher consumes."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from stacknotify.constants import STREAM_PREFIX
from stacknotify.errors import MessageDecodeError


class MessageKind(str, Enum):
    OCCURRENCE = "occurrence"
    NOTIFICATION = "notification"
    SUMMARY = "summary"
    WEBHOOK = "webhook"

    @property
    def stream(self) -> str:
        return f"{STREAM_PREFIX}:{self.value}"


class OccurrenceMessage(BaseModel):
    """Raw error occurrence handed straight to the processing pipeline."""

    id: str = ""
    project_id: str = ""
    stack_id: str | None = None
    occurrence_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    type: str | None = None
    message: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class NotificationMessage(BaseModel):
    project_id: str
    error_id: str
    error_stack_id: str
    code: str | None = None
    user_agent: str | None = None
    is_new: bool = False
    is_regression: bool = False
    is_critical: bool = False
    # Display fields forwarded to the notice
    url: str | None = None
    title: str | None = None
    type: str | None = None
    message: str | None = None
    occurrence_date: datetime | None = None


class SummaryRequest(BaseModel):
    project_id: str
    utc_start_time: datetime
    utc_end_time: datetime


class WebhookMessage(BaseModel):
    project_id: str
    url: str
    data: Any = None


MESSAGE_TYPES: dict[MessageKind, type[BaseModel]] = {
    MessageKind.OCCURRENCE: OccurrenceMessage,
    MessageKind.NOTIFICATION: NotificationMessage,
    MessageKind.SUMMARY: SummaryRequest,
    MessageKind.WEBHOOK: WebhookMessage,
}


def to_stream_dict(message: BaseModel) -> dict[str, str]:
    """Serialize to a flat string dict for Redis XADD."""
    return {"body": message.model_dump_json()}


def from_stream_dict(kind: MessageKind, data: dict[bytes, bytes] | dict[str, str]) -> BaseModel:
    """Deserialize a Redis stream entry into the message model for ``kind``."""

    def _str(v: bytes | str) -> str:
        return v.decode() if isinstance(v, bytes) else v

    try:
        fields = {_str(k): _str(v) for k, v in data.items()}
    except UnicodeDecodeError as exc:
        raise MessageDecodeError(f"{kind.value} entry is not valid UTF-8: {exc}") from exc
    body = fields.get("body")
    if not body:
        raise MessageDecodeError(f"{kind.value} entry has no body field")
    try:
        return MESSAGE_TYPES[kind].model_validate_json(body)
    except ValidationError as exc:
        raise MessageDecodeError(f"invalid {kind.value} body: {exc}") from exc


def project_id_of(message: Any) -> str | None:
    """Best-effort project id for log context."""
    project_id = getattr(message, "project_id", None)
    return project_id or None
