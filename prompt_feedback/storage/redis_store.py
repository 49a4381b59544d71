"""Redis-backed chat store. Messages are decoded into typed content parts here and nowhere else."""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from prompt_feedback.core.errors import StorageUnavailable
from prompt_feedback.core.events import (
    Chat,
    FeedbackRecord,
    ReasoningPart,
    StoredMessage,
    TextPart,
)

logger = logging.getLogger(__name__)

_PART_MODELS = {"text": TextPart, "reasoning": ReasoningPart}


def decode_parts(raw_parts: Any) -> list[Any]:
    """Typed parts from untyped JSON. Unknown or malformed parts are dropped."""
    if not isinstance(raw_parts, list):
        return []
    parts = []
    for raw in raw_parts:
        model = _PART_MODELS.get(raw.get("type")) if isinstance(raw, dict) else None
        if model is None:
            continue
        try:
            parts.append(model.model_validate(raw))
        except ValidationError:
            logger.debug("dropping malformed content part", extra={"part_type": raw.get("type")})
    return parts


def decode_message(raw: str | bytes) -> StoredMessage | None:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    data["parts"] = decode_parts(data.get("parts"))
    try:
        return StoredMessage.model_validate(data)
    except ValidationError as e:
        logger.warning("undecodable message", extra={"error": str(e)})
        return None


class RedisChatStore:
    """Chats, messages and feedback records as JSON documents in Redis."""

    def __init__(self, redis_url: str, key_prefix: str = "feedback") -> None:
        self._redis_url = redis_url
        self._prefix = key_prefix
        self._client: aioredis.Redis | None = None

    async def connect(self) -> None:
        if self._client is None:
            try:
                self._client = aioredis.from_url(self._redis_url, decode_responses=True)
                await self._client.ping()
            except (RedisError, OSError) as e:
                self._client = None
                raise StorageUnavailable() from e

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _chat_key(self, chat_id: str) -> str:
        return f"{self._prefix}:chat:{chat_id}"

    def _message_key(self, message_id: str) -> str:
        return f"{self._prefix}:message:{message_id}"

    def _chat_messages_key(self, chat_id: str) -> str:
        return f"{self._prefix}:chat_messages:{chat_id}"

    def _feedback_key(self, feedback_id: str) -> str:
        return f"{self._prefix}:feedback:{feedback_id}"

    def _message_feedback_key(self, message_id: str) -> str:
        return f"{self._prefix}:message_feedback:{message_id}"

    async def get_chat(self, chat_id: str) -> Chat | None:
        await self.connect()
        try:
            raw = await self._client.get(self._chat_key(chat_id))
        except (RedisError, OSError) as e:
            raise StorageUnavailable() from e
        if not raw:
            return None
        try:
            return Chat.model_validate_json(raw)
        except ValidationError:
            return None

    async def get_message(self, message_id: str) -> StoredMessage | None:
        await self.connect()
        try:
            raw = await self._client.get(self._message_key(message_id))
        except (RedisError, OSError) as e:
            raise StorageUnavailable() from e
        return decode_message(raw) if raw else None

    async def get_messages_by_chat(self, chat_id: str) -> list[StoredMessage]:
        """Messages of a chat in insertion order."""
        await self.connect()
        try:
            ids = await self._client.lrange(self._chat_messages_key(chat_id), 0, -1)
            raws = await self._client.mget([self._message_key(i) for i in ids]) if ids else []
        except (RedisError, OSError) as e:
            raise StorageUnavailable() from e
        out = []
        for raw in raws:
            msg = decode_message(raw) if raw else None
            if msg is not None:
                out.append(msg)
        return out

    async def save_chat(self, chat: Chat) -> None:
        await self.connect()
        try:
            await self._client.set(self._chat_key(chat.id), chat.model_dump_json())
        except (RedisError, OSError) as e:
            raise StorageUnavailable() from e

    async def save_message(self, message: StoredMessage) -> None:
        await self.connect()
        try:
            pipe = self._client.pipeline()
            pipe.set(self._message_key(message.id), message.model_dump_json())
            pipe.rpush(self._chat_messages_key(message.chat_id), message.id)
            await pipe.execute()
        except (RedisError, OSError) as e:
            raise StorageUnavailable() from e

    async def save_feedback(self, record: FeedbackRecord) -> None:
        await self.connect()
        try:
            # NX: a feedback id is written once and never overwritten.
            pipe = self._client.pipeline()
            pipe.set(self._feedback_key(record.id), record.model_dump_json(), nx=True)
            pipe.rpush(self._message_feedback_key(record.message_id), record.id)
            await pipe.execute()
        except (RedisError, OSError) as e:
            raise StorageUnavailable() from e
        logger.info(
            "feedback saved",
            extra={"feedback_id": record.id, "message_id": record.message_id},
        )

    async def get_feedback_for_message(self, message_id: str) -> list[FeedbackRecord]:
        await self.connect()
        try:
            ids = await self._client.lrange(self._message_feedback_key(message_id), 0, -1)
            raws = await self._client.mget([self._feedback_key(i) for i in ids]) if ids else []
        except (RedisError, OSError) as e:
            raise StorageUnavailable() from e
        out = []
        for raw in raws:
            if not raw:
                continue
            data = json.loads(raw)
            data["parts"] = decode_parts(data.get("parts"))
            out.append(FeedbackRecord.model_validate(data))
        return out
