"""Resumption coordinator: publishes live streams to the side-channel and reattaches readers.

Built once at startup and shared by every request handler. When the
side-channel cannot be initialized the coordinator runs in pass-through mode:
responses are served straight from the multiplexer and nothing is resumable.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, AsyncIterable, AsyncIterator, Callable, Optional

from redis.exceptions import RedisError

from prompt_feedback.core.events import ErrorEvent, utcnow
from prompt_feedback.core.multiplexer import DEFAULT_ERROR_MESSAGE, encode_event
from prompt_feedback.core.side_channel import (
    UNAVAILABLE,
    RedisSideChannel,
    SideChannel,
    SideChannelTimeout,
    StreamState,
)

if TYPE_CHECKING:
    from prompt_feedback.config.loader import ResumableSettings

logger = logging.getLogger(__name__)

SequenceFactory = Callable[[], AsyncIterable[bytes]]


@dataclass
class StreamSession:
    """In-process handle of a published stream; exists only on the process that started it."""

    stream_id: str
    chat_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    task: Optional[asyncio.Task] = None


class ResumptionCoordinator:
    def __init__(
        self,
        side_channel: SideChannel = UNAVAILABLE,
        *,
        max_duration_seconds: float = 60.0,
        error_message: str = DEFAULT_ERROR_MESSAGE,
    ) -> None:
        self._channel = side_channel
        self._max_duration = max_duration_seconds
        self._error_frame = encode_event(ErrorEvent(message=error_message))
        self._sessions: dict[str, StreamSession] = {}

    @classmethod
    async def create(
        cls, settings: ResumableSettings, *, error_message: str = DEFAULT_ERROR_MESSAGE
    ) -> "ResumptionCoordinator":
        """Decide resumable vs pass-through once for the process lifetime."""
        channel: SideChannel = UNAVAILABLE
        if not settings.redis_url:
            logger.info("Resumable streams are disabled due to missing REDIS_URL")
        else:
            redis_channel = RedisSideChannel(
                settings.redis_url,
                key_prefix=settings.key_prefix,
                ttl_seconds=settings.stream_ttl_seconds,
                block_ms=settings.read_block_ms,
                idle_timeout_seconds=settings.idle_timeout_seconds,
            )
            try:
                await redis_channel.connect()
                channel = redis_channel
            except (RedisError, OSError) as e:
                logger.warning(
                    "side-channel unavailable, resumable streams disabled",
                    extra={"error": str(e)},
                )
        return cls(
            channel,
            max_duration_seconds=settings.max_duration_seconds,
            error_message=error_message,
        )

    @property
    def available(self) -> bool:
        return self._channel.available

    @property
    def mode(self) -> str:
        return "resumable" if self.available else "pass-through"

    def session(self, stream_id: str) -> StreamSession | None:
        return self._sessions.get(stream_id)

    async def publish_and_serve(
        self,
        stream_id: str,
        build_sequence: SequenceFactory,
        *,
        chat_id: str | None = None,
    ) -> AsyncIterable[bytes]:
        """Serve a new stream; in resumable mode also buffer it for later readers."""
        if not self.available:
            return build_sequence()
        try:
            await self._channel.open(stream_id)
        except (RedisError, OSError) as e:
            logger.warning(
                "side-channel publish failed, serving without resumption",
                extra={"stream_id": stream_id, "error": str(e)},
            )
            return build_sequence()
        session = StreamSession(stream_id=stream_id, chat_id=chat_id)
        session.task = asyncio.create_task(
            self._pump(stream_id, build_sequence()), name=f"stream-pump:{stream_id}"
        )
        self._sessions[stream_id] = session
        session.task.add_done_callback(lambda _t: self._sessions.pop(stream_id, None))
        logger.info("stream published", extra={"stream_id": stream_id, "chat_id": chat_id})
        return self._reader(stream_id)

    async def resume(
        self,
        stream_id: str,
        fallback_factory: SequenceFactory | None = None,
    ) -> AsyncIterable[bytes] | None:
        """Attach to a live stream. None means nothing is live: apply the reconstruction policy."""
        if not self.available:
            return None
        try:
            state = await self._channel.state(stream_id)
        except (RedisError, OSError) as e:
            logger.warning(
                "side-channel lookup failed", extra={"stream_id": stream_id, "error": str(e)}
            )
            state = StreamState.MISSING
        if state is StreamState.LIVE:
            logger.info("resuming stream", extra={"stream_id": stream_id})
            return self._reader(stream_id)
        if fallback_factory is not None:
            return fallback_factory()
        return None

    async def _pump(self, stream_id: str, sequence: AsyncIterable[bytes]) -> None:
        """Drive the producer to completion independently of any reader."""
        try:
            await asyncio.wait_for(self._drain(stream_id, sequence), timeout=self._max_duration)
        except asyncio.TimeoutError:
            logger.warning("stream exceeded max duration", extra={"stream_id": stream_id})
            await self._append_quietly(stream_id, self._error_frame)
        except asyncio.CancelledError:
            logger.warning("stream cancelled before completion", extra={"stream_id": stream_id})
            await self._append_quietly(stream_id, self._error_frame)
            raise
        except (RedisError, OSError) as e:
            logger.error(
                "side-channel write failed mid-stream",
                extra={"stream_id": stream_id, "error": str(e)},
            )
            await self._append_quietly(stream_id, self._error_frame)
        finally:
            try:
                await self._channel.finish(stream_id)
            except (RedisError, OSError) as e:
                logger.error(
                    "could not mark stream done", extra={"stream_id": stream_id, "error": str(e)}
                )

    async def _drain(self, stream_id: str, sequence: AsyncIterable[bytes]) -> None:
        iterator = sequence.__aiter__()
        try:
            async for chunk in iterator:
                await self._channel.append(stream_id, chunk)
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _append_quietly(self, stream_id: str, chunk: bytes) -> None:
        try:
            await self._channel.append(stream_id, chunk)
        except (RedisError, OSError) as e:
            logger.error(
                "could not write error frame", extra={"stream_id": stream_id, "error": str(e)}
            )

    async def _reader(self, stream_id: str) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._channel.read(stream_id):
                yield chunk
        except SideChannelTimeout:
            logger.warning("side-channel read timed out", extra={"stream_id": stream_id})
            yield self._error_frame
        except (RedisError, OSError) as e:
            logger.error(
                "side-channel read failed", extra={"stream_id": stream_id, "error": str(e)}
            )
            yield self._error_frame

    async def aclose(self) -> None:
        """Cancel producers still running on this process and release the side-channel."""
        tasks = [s.task for s in self._sessions.values() if s.task and not s.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._channel.close()
