"""Request bodies of the feedback endpoints."""

from __future__ import annotations

from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from prompt_feedback.core.pipeline import FeedbackRequest


class MessageData(BaseModel):
    chatId: UUID
    messageId: UUID
    language: str = Field(min_length=1, max_length=10)


class UserMessageIn(BaseModel):
    role: Literal["user"]
    content: str = Field(max_length=2000)
    parts: list[Any] = Field(default_factory=list)
    data: MessageData


class PostRequestBody(BaseModel):
    """Body sent by the chat UI: the target message and language ride in messages[0].data."""

    id: UUID
    messages: list[UserMessageIn] = Field(min_length=1)

    def to_request(self) -> FeedbackRequest:
        data = self.messages[0].data
        return FeedbackRequest(
            chat_id=str(self.id),
            message_id=str(data.messageId),
            language=data.language,
        )


class LegacyRequestBody(BaseModel):
    """Flat body of the first feedback endpoint; language is always the default."""

    chatId: Optional[str] = None
    messageId: Optional[str] = None

    def to_request(self, default_language: str = "en") -> FeedbackRequest:
        return FeedbackRequest(
            chat_id=self.chatId, message_id=self.messageId, language=default_language
        )
