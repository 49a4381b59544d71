"""Typed payloads: stored messages, content parts, wire events. All Pydantic models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ReasoningPart(BaseModel):
    type: Literal["reasoning"] = "reasoning"
    reasoning: str


ContentPart = Annotated[Union[TextPart, ReasoningPart], Field(discriminator="type")]


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"  # generated by the model


class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class Chat(BaseModel):
    id: str
    user_id: str
    title: str = ""
    visibility: Visibility = Visibility.PRIVATE
    created_at: datetime = Field(default_factory=utcnow)


class StoredMessage(BaseModel):
    """A chat message as persisted by the storage layer."""

    id: str
    chat_id: str
    role: MessageRole
    parts: list[ContentPart] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    def first_text(self) -> Optional[str]:
        """Text of the first part, or None when it is missing, empty or not text."""
        if not self.parts:
            return None
        first = self.parts[0]
        if isinstance(first, TextPart) and first.text:
            return first.text
        return None


class StreamLogEntry(BaseModel):
    stream_id: str
    chat_id: str
    created_at: datetime = Field(default_factory=utcnow)


class FeedbackRecord(BaseModel):
    """Generated feedback for one message; written once per completed session."""

    id: str
    message_id: str
    chat_id: str
    parts: list[ContentPart] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


class Transcript(BaseModel):
    """Finalized ordered output of a completed stream."""

    message_id: str
    parts: list[ContentPart] = Field(default_factory=list)

    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))


# ----- Wire events -----


class StartEvent(BaseModel):
    kind: Literal["start"] = "start"
    message_id: str


class TextDelta(BaseModel):
    kind: Literal["text-delta"] = "text-delta"
    text: str


class ReasoningDelta(BaseModel):
    kind: Literal["reasoning-delta"] = "reasoning-delta"
    text: str


class AppendMessage(BaseModel):
    kind: Literal["append-message"] = "append-message"
    message: dict[str, Any]


class ErrorEvent(BaseModel):
    """Terminal. `message` is what the client sees; `detail` stays in the logs."""

    kind: Literal["error"] = "error"
    message: str = ""
    detail: str = Field(default="", exclude=True)


class FinishEvent(BaseModel):
    kind: Literal["finish"] = "finish"
    finish_reason: str = "stop"


WireEvent = Annotated[
    Union[StartEvent, TextDelta, ReasoningDelta, AppendMessage, ErrorEvent, FinishEvent],
    Field(discriminator="kind"),
]

_wire_event_adapter: TypeAdapter[Any] = TypeAdapter(WireEvent)
_parts_adapter: TypeAdapter[Any] = TypeAdapter(list[ContentPart])


def parse_wire_event(data: dict[str, Any]) -> Any:
    return _wire_event_adapter.validate_python(data)


def parse_parts(data: Any) -> list[Any]:
    return _parts_adapter.validate_python(data)
