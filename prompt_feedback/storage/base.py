"""Interfaces of the external collaborators: chat storage and caller identity."""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from pydantic import BaseModel

from prompt_feedback.core.events import Chat, FeedbackRecord, StoredMessage


class User(BaseModel):
    id: str
    login: str = ""
    role: str = "user"


@runtime_checkable
class ChatStore(Protocol):
    """Chat, message and feedback persistence. Raises StorageUnavailable when unreachable."""

    async def get_chat(self, chat_id: str) -> Optional[Chat]: ...

    async def get_message(self, message_id: str) -> Optional[StoredMessage]: ...

    async def get_messages_by_chat(self, chat_id: str) -> list[StoredMessage]: ...

    async def save_feedback(self, record: FeedbackRecord) -> None: ...


@runtime_checkable
class SessionAuth(Protocol):
    """Resolves the caller of a request; None when unauthenticated."""

    async def current_user(self, request: Any) -> Optional[User]: ...
