"""Side-channel for resumable streams: buffers a stream's wire bytes in Redis Streams.

One Redis stream per stream id. Entries carry a type field `t`:

    open   written when the stream is published
    chunk  one wire chunk in field `d`
    done   written once the producer has finished (successfully or not)

Readers replay from the first entry and follow live appends until `done`.
The key expires `ttl` seconds after the last write.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import AsyncIterator

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

_TYPE = b"t"
_DATA = b"d"
_OPEN = b"open"
_CHUNK = b"chunk"
_DONE = b"done"


class StreamState(str, Enum):
    MISSING = "missing"
    LIVE = "live"
    DONE = "done"


class SideChannelTimeout(TimeoutError):
    """No new entries arrived within the idle timeout."""


class SideChannel:
    """Interface. `available` is False only for the pass-through variant."""

    available: bool = True

    async def open(self, stream_id: str) -> None:
        raise NotImplementedError

    async def append(self, stream_id: str, chunk: bytes) -> None:
        raise NotImplementedError

    async def finish(self, stream_id: str) -> None:
        raise NotImplementedError

    async def state(self, stream_id: str) -> StreamState:
        raise NotImplementedError

    def read(self, stream_id: str) -> AsyncIterator[bytes]:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class UnavailableSideChannel(SideChannel):
    """Pass-through mode: nothing is buffered and nothing can be resumed."""

    available = False

    async def open(self, stream_id: str) -> None:
        raise RuntimeError("side-channel is unavailable")

    async def append(self, stream_id: str, chunk: bytes) -> None:
        raise RuntimeError("side-channel is unavailable")

    async def finish(self, stream_id: str) -> None:
        raise RuntimeError("side-channel is unavailable")

    async def state(self, stream_id: str) -> StreamState:
        return StreamState.MISSING

    def read(self, stream_id: str) -> AsyncIterator[bytes]:
        raise RuntimeError("side-channel is unavailable")


UNAVAILABLE = UnavailableSideChannel()


class RedisSideChannel(SideChannel):
    """Redis Streams implementation."""

    def __init__(
        self,
        redis_url: str,
        *,
        key_prefix: str = "resumable-stream",
        ttl_seconds: int = 3600,
        block_ms: int = 1000,
        idle_timeout_seconds: float = 60.0,
    ) -> None:
        self._redis_url = redis_url
        self._prefix = key_prefix
        self._ttl = ttl_seconds
        self._block_ms = block_ms
        self._idle_timeout = idle_timeout_seconds
        self._client: aioredis.Redis | None = None

    async def connect(self) -> None:
        if self._client is None:
            client = aioredis.from_url(self._redis_url, decode_responses=False)
            await client.ping()
            self._client = client
            logger.info("side-channel connected to Redis")

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _ensure_connected(self) -> aioredis.Redis:
        if self._client is None:
            await self.connect()
        return self._client

    def _key(self, stream_id: str) -> str:
        return f"{self._prefix}:rs:{stream_id}"

    async def _add(self, stream_id: str, fields: dict[bytes, bytes]) -> None:
        client = await self._ensure_connected()
        key = self._key(stream_id)
        pipe = client.pipeline()
        pipe.xadd(key, fields)
        pipe.expire(key, self._ttl)
        await pipe.execute()

    async def open(self, stream_id: str) -> None:
        await self._add(stream_id, {_TYPE: _OPEN})

    async def append(self, stream_id: str, chunk: bytes) -> None:
        await self._add(stream_id, {_TYPE: _CHUNK, _DATA: chunk})

    async def finish(self, stream_id: str) -> None:
        await self._add(stream_id, {_TYPE: _DONE})

    async def state(self, stream_id: str) -> StreamState:
        client = await self._ensure_connected()
        last = await client.xrevrange(self._key(stream_id), count=1)
        if not last:
            return StreamState.MISSING
        _, fields = last[0]
        if fields.get(_TYPE) == _DONE:
            return StreamState.DONE
        return StreamState.LIVE

    def read(self, stream_id: str) -> AsyncIterator[bytes]:
        """Replay buffered chunks from the start, then follow live ones until `done`."""

        async def _read() -> AsyncIterator[bytes]:
            client = await self._ensure_connected()
            key = self._key(stream_id)
            last_id: bytes | str = "0-0"
            idle = 0.0
            while True:
                resp = await client.xread({key: last_id}, count=100, block=self._block_ms)
                if not resp:
                    idle += self._block_ms / 1000.0
                    if idle >= self._idle_timeout:
                        raise SideChannelTimeout(f"no data for stream {stream_id}")
                    continue
                idle = 0.0
                for _key, entries in resp:
                    for entry_id, fields in entries:
                        last_id = entry_id
                        kind = fields.get(_TYPE)
                        if kind == _CHUNK:
                            yield fields.get(_DATA, b"")
                        elif kind == _DONE:
                            return

        return _read()
