"""TokenProducer: one engine call turned into a lazy, cancellable sequence of WireEvents."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import AsyncIterator, Awaitable, Callable, Union

from prompt_feedback.core.events import (
    ErrorEvent,
    ReasoningDelta,
    ReasoningPart,
    TextDelta,
    TextPart,
    Transcript,
)
from prompt_feedback.models.streaming import EngineDelta, StreamingEngine

logger = logging.getLogger(__name__)

FinishCallback = Callable[[Transcript], Awaitable[None]]

# Engine deltas held between the pump task and the consumer.
DEFAULT_MAX_BUFFERED = 64


class CancelToken:
    """Cancellation signal shared by the HTTP layer, the side-channel pump and the producer."""

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: str | None = None
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "cancelled") -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self.reason = reason
        callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            cb()

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Run callback on cancel; immediately if already cancelled."""
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)


class _Done:
    pass


class _Cancelled:
    pass


class _Failed:
    def __init__(self, error: BaseException) -> None:
        self.error = error


_QueueItem = Union[EngineDelta, _Done, _Cancelled, _Failed]


def _merge_into(parts: list, delta: EngineDelta) -> None:
    last = parts[-1] if parts else None
    if delta.kind == "text":
        if isinstance(last, TextPart):
            last.text += delta.text
        else:
            parts.append(TextPart(text=delta.text))
    else:
        if isinstance(last, ReasoningPart):
            last.reasoning += delta.text
        else:
            parts.append(ReasoningPart(reasoning=delta.text))


class TokenProducer:
    """Single-use producer bound to one stream session.

    The engine is consumed by one dedicated task so that the upstream HTTP
    stream is opened and closed in the same task; cancelling the token
    cancels that task, which closes the engine response.
    """

    def __init__(
        self,
        engine: StreamingEngine,
        prompt: str,
        *,
        system: str | None = None,
        message_id: str | None = None,
        cancel_token: CancelToken | None = None,
        on_finish: FinishCallback | None = None,
        max_buffered: int = DEFAULT_MAX_BUFFERED,
    ) -> None:
        self._engine = engine
        self._prompt = prompt
        self._system = system
        self.message_id = message_id or str(uuid.uuid4())
        self.cancel_token = cancel_token or CancelToken()
        self._on_finish = on_finish
        self._max_buffered = max_buffered
        self._started = False

    def events(self) -> AsyncIterator:
        if self._started:
            raise RuntimeError("TokenProducer is single-use; build a new one per session")
        self._started = True
        return self._run()

    async def _pump(self, queue: asyncio.Queue[_QueueItem]) -> None:
        upstream = self._engine.stream(self._prompt, system=self._system)
        try:
            # put() blocks while the queue is full, so the engine is read only as fast as it is consumed.
            async for delta in upstream:
                await queue.put(delta)
            await queue.put(_Done())
        except Exception as e:
            await queue.put(_Failed(e))
        finally:
            aclose = getattr(upstream, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _run(self) -> AsyncIterator:
        queue: asyncio.Queue[_QueueItem] = asyncio.Queue(maxsize=self._max_buffered)
        pump = asyncio.ensure_future(self._pump(queue))

        def _abort() -> None:
            pump.cancel()
            # Wakes a reader blocked on an empty queue; a full queue means the reader is not blocked.
            try:
                queue.put_nowait(_Cancelled())
            except asyncio.QueueFull:
                pass

        self.cancel_token.on_cancel(_abort)
        parts: list = []
        try:
            while True:
                if self.cancel_token.cancelled:
                    item: _QueueItem = _Cancelled()
                else:
                    item = await queue.get()
                if isinstance(item, EngineDelta):
                    _merge_into(parts, item)
                    if item.kind == "text":
                        yield TextDelta(text=item.text)
                    else:
                        yield ReasoningDelta(text=item.text)
                elif isinstance(item, _Failed):
                    logger.warning(
                        "engine failed mid-stream",
                        extra={"message_id": self.message_id, "error": str(item.error)},
                    )
                    yield ErrorEvent(detail=str(item.error))
                    return
                elif isinstance(item, _Cancelled):
                    reason = self.cancel_token.reason or "cancelled"
                    logger.info(
                        "generation cancelled",
                        extra={"message_id": self.message_id, "reason": reason},
                    )
                    yield ErrorEvent(detail=f"cancelled: {reason}")
                    return
                else:
                    break
            if self._on_finish is not None:
                await self._on_finish(Transcript(message_id=self.message_id, parts=parts))
        finally:
            if not pump.done():
                self.cancel_token.cancel("consumer closed")
                pump.cancel()
                await asyncio.gather(pump, return_exceptions=True)
