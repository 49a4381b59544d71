"""Pytest fixtures and in-memory collaborators."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Iterable

import pytest

from prompt_feedback.config.loader import PromptSettings
from prompt_feedback.core.events import (
    Chat,
    FeedbackRecord,
    MessageRole,
    StoredMessage,
    TextPart,
    Visibility,
)
from prompt_feedback.core.pipeline import SessionPipeline
from prompt_feedback.core.resumption import ResumptionCoordinator
from prompt_feedback.core.side_channel import UNAVAILABLE, SideChannel, StreamState
from prompt_feedback.models.streaming import EngineDelta
from prompt_feedback.storage.base import User

CHAT_ID = "0b7c1b2e-3a4d-4c5e-8f90-1a2b3c4d5e6f"
MESSAGE_ID = "9f8e7d6c-5b4a-4321-9abc-def012345678"
USER = User(id="user-1", login="alice")


@pytest.fixture(autouse=True)
def env_cleanup(monkeypatch):
    """Avoid picking up a real deployment's environment in tests."""
    for name in (
        "REDIS_URL",
        "STORAGE_REDIS_URL",
        "OPENAI_API_KEY",
        "OPENAI_BASE_URL",
        "MODEL_NAME",
        "MODEL_PROVIDER",
        "LOG_LEVEL",
        "API_HOST",
        "API_PORT",
        "FEEDBACK_ENV",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


class FakeEngine:
    """Streams fixed deltas; optionally fails after `fail_after` deltas or waits forever."""

    def __init__(
        self,
        deltas: Iterable[tuple[str, str]] = (("text", "Hello "), ("text", "world.")),
        *,
        fail_after: int | None = None,
        hang: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.deltas = [EngineDelta(kind, text) for kind, text in deltas]
        self.fail_after = fail_after
        self.hang = hang
        self.delay = delay
        self.calls: list[tuple[str, str | None]] = []
        self.closed = False
        self.yielded = 0

    def stream(self, prompt: str, *, system: str | None = None) -> AsyncIterator[EngineDelta]:
        self.calls.append((prompt, system))

        async def _stream() -> AsyncIterator[EngineDelta]:
            try:
                for i, delta in enumerate(self.deltas):
                    if self.fail_after is not None and i >= self.fail_after:
                        raise RuntimeError("engine exploded")
                    if self.delay:
                        await asyncio.sleep(self.delay)
                    self.yielded += 1
                    yield delta
                if self.hang:
                    await asyncio.Event().wait()
            finally:
                self.closed = True

        return _stream()


class MemoryChatStore:
    def __init__(self) -> None:
        self.chats: dict[str, Chat] = {}
        self.messages: dict[str, StoredMessage] = {}
        self.feedback: list[FeedbackRecord] = []
        self.fail_save = False

    def add_chat(self, chat: Chat) -> None:
        self.chats[chat.id] = chat

    def add_message(self, message: StoredMessage) -> None:
        self.messages[message.id] = message

    async def get_chat(self, chat_id: str) -> Chat | None:
        return self.chats.get(chat_id)

    async def get_message(self, message_id: str) -> StoredMessage | None:
        return self.messages.get(message_id)

    async def get_messages_by_chat(self, chat_id: str) -> list[StoredMessage]:
        return [m for m in self.messages.values() if m.chat_id == chat_id]

    async def save_feedback(self, record: FeedbackRecord) -> None:
        if self.fail_save:
            raise ConnectionError("database is down")
        self.feedback.append(record)


class MemoryRegistry:
    def __init__(self) -> None:
        self.logs: dict[str, list[str]] = {}

    async def register(self, stream_id: str, chat_id: str) -> None:
        log = self.logs.setdefault(chat_id, [])
        if stream_id not in log:
            log.append(stream_id)

    async def tail(self, chat_id: str) -> str | None:
        log = self.logs.get(chat_id)
        return log[-1] if log else None


class MemorySideChannel(SideChannel):
    """Side-channel held in process memory; readers replay then follow like Redis Streams."""

    def __init__(self) -> None:
        self.streams: dict[str, list[tuple[str, bytes]]] = {}
        self._cond = asyncio.Condition()

    async def _add(self, stream_id: str, kind: str, data: bytes = b"") -> None:
        async with self._cond:
            self.streams.setdefault(stream_id, []).append((kind, data))
            self._cond.notify_all()

    async def open(self, stream_id: str) -> None:
        await self._add(stream_id, "open")

    async def append(self, stream_id: str, chunk: bytes) -> None:
        await self._add(stream_id, "chunk", chunk)

    async def finish(self, stream_id: str) -> None:
        await self._add(stream_id, "done")

    async def state(self, stream_id: str) -> StreamState:
        entries = self.streams.get(stream_id)
        if not entries:
            return StreamState.MISSING
        return StreamState.DONE if entries[-1][0] == "done" else StreamState.LIVE

    def read(self, stream_id: str) -> AsyncIterator[bytes]:
        async def _read() -> AsyncIterator[bytes]:
            seen = 0
            while True:
                async with self._cond:
                    await self._cond.wait_for(lambda: len(self.streams.get(stream_id, [])) > seen)
                    entries = self.streams[stream_id][seen:]
                seen += len(entries)
                for kind, data in entries:
                    if kind == "chunk":
                        yield data
                    elif kind == "done":
                        return

        return _read()


def user_message(
    message_id: str = MESSAGE_ID,
    chat_id: str = CHAT_ID,
    text: str = "Write a poem about the sea",
    created_at: datetime | None = None,
) -> StoredMessage:
    return StoredMessage(
        id=message_id,
        chat_id=chat_id,
        role=MessageRole.USER,
        parts=[TextPart(text=text)] if text else [],
        created_at=created_at or datetime.now(timezone.utc) - timedelta(minutes=5),
    )


def assistant_message(
    message_id: str = "a1",
    chat_id: str = CHAT_ID,
    text: str = "Here is a poem.",
    age_seconds: float = 0.0,
    now: datetime | None = None,
) -> StoredMessage:
    now = now or datetime.now(timezone.utc)
    return StoredMessage(
        id=message_id,
        chat_id=chat_id,
        role=MessageRole.ASSISTANT,
        parts=[TextPart(text=text)],
        created_at=now - timedelta(seconds=age_seconds),
    )


async def collect(body) -> bytes:
    out = b""
    async for chunk in body:
        out += chunk
    return out


@pytest.fixture
def store() -> MemoryChatStore:
    s = MemoryChatStore()
    s.add_chat(Chat(id=CHAT_ID, user_id=USER.id, visibility=Visibility.PRIVATE))
    s.add_message(user_message())
    return s


@pytest.fixture
def registry() -> MemoryRegistry:
    return MemoryRegistry()


@pytest.fixture
def make_pipeline(store, registry):
    """Factory: make_pipeline(engine=None, side_channel=None) -> SessionPipeline."""

    def _make(engine=None, side_channel: SideChannel | None = None, **kwargs) -> SessionPipeline:
        coordinator = ResumptionCoordinator(side_channel or UNAVAILABLE, max_duration_seconds=5)
        return SessionPipeline(
            store=store,
            registry=registry,
            coordinator=coordinator,
            engine=engine or FakeEngine(),
            prompts=PromptSettings(),
            smoothing=kwargs.pop("smoothing", None),
            **kwargs,
        )

    return _make
