"""Stream id registry: append-only log of stream ids per chat, stored in Redis."""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from prompt_feedback.core.errors import StorageUnavailable
from prompt_feedback.core.events import StreamLogEntry

logger = logging.getLogger(__name__)

LOG_KEY = "{prefix}:stream_ids:{chat_id}"
ENTRY_KEY = "{prefix}:stream:{stream_id}"


class StreamIdRegistry:
    """Ordered stream ids per chat. Ids are appended once and never mutated or removed."""

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
                raise StorageUnavailable("stream", "Stream registry is unreachable.") from e

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _log_key(self, chat_id: str) -> str:
        return LOG_KEY.format(prefix=self._prefix, chat_id=chat_id)

    def _entry_key(self, stream_id: str) -> str:
        return ENTRY_KEY.format(prefix=self._prefix, stream_id=stream_id)

    async def register(self, stream_id: str, chat_id: str) -> StreamLogEntry:
        """Append stream_id to the chat's log. Registering the same id again is a no-op."""
        await self.connect()
        entry = StreamLogEntry(stream_id=stream_id, chat_id=chat_id)
        try:
            # SET NX claims the id; only the first registration appends to the log.
            created = await self._client.set(
                self._entry_key(stream_id), entry.model_dump_json(), nx=True
            )
            if created:
                await self._client.rpush(self._log_key(chat_id), stream_id)
            else:
                raw = await self._client.get(self._entry_key(stream_id))
                if raw:
                    entry = StreamLogEntry.model_validate_json(raw)
        except (RedisError, OSError) as e:
            logger.warning(
                "stream id registration failed",
                extra={"stream_id": stream_id, "chat_id": chat_id, "error": str(e)},
            )
            raise StorageUnavailable("stream", "Stream registry is unreachable.") from e
        logger.debug("registered stream id", extra={"stream_id": stream_id, "chat_id": chat_id})
        return entry

    async def tail(self, chat_id: str) -> str | None:
        """Most recently registered stream id for the chat, or None."""
        await self.connect()
        try:
            last = await self._client.lrange(self._log_key(chat_id), -1, -1)
        except (RedisError, OSError) as e:
            raise StorageUnavailable("stream", "Stream registry is unreachable.") from e
        return last[0] if last else None

    async def list_ids(self, chat_id: str) -> list[str]:
        await self.connect()
        try:
            return list(await self._client.lrange(self._log_key(chat_id), 0, -1))
        except (RedisError, OSError) as e:
            raise StorageUnavailable("stream", "Stream registry is unreachable.") from e
