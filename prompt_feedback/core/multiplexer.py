"""Data stream wire format and the multiplexer that serializes WireEvents for the HTTP body.

Wire format: one event per line, `<code>:<json>\\n`.

    f  start           {"messageId": "..."}
    0  text-delta      "text"
    g  reasoning-delta "text"
    2  append-message  [{"type": "append-message", "message": "<message json>"}]
    3  error           "user-facing message"   (terminal)
    d  finish          {"finishReason": "stop"} (terminal)

Clients process lines in arrival order and stop at `3` or `d`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, AsyncIterable, AsyncIterator, Iterable

from prompt_feedback.core.events import (
    AppendMessage,
    ErrorEvent,
    FinishEvent,
    ReasoningDelta,
    StartEvent,
    TextDelta,
)

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Oops, an error occurred!"
STREAM_HEADERS = {"x-vercel-ai-data-stream": "v1"}
MEDIA_TYPE = "text/plain; charset=utf-8"

_CODE_BY_KIND = {
    "start": "f",
    "text-delta": "0",
    "reasoning-delta": "g",
    "append-message": "2",
    "error": "3",
    "finish": "d",
}
_KIND_BY_CODE = {v: k for k, v in _CODE_BY_KIND.items()}

_CHUNK_PATTERNS = {
    "word": r"\s*\S+\s+",
    "line": r"\n+",
}


def _frame(code: str, payload: Any) -> bytes:
    return f"{code}:{json.dumps(payload, ensure_ascii=False, separators=(',', ':'))}\n".encode(
        "utf-8"
    )


def encode_event(event: Any) -> bytes:
    """Serialize one WireEvent. Deterministic: same event, same bytes."""
    if isinstance(event, TextDelta) or isinstance(event, ReasoningDelta):
        return _frame(_CODE_BY_KIND[event.kind], event.text)
    if isinstance(event, StartEvent):
        return _frame("f", {"messageId": event.message_id})
    if isinstance(event, AppendMessage):
        message = json.dumps(event.message, ensure_ascii=False, default=str)
        return _frame("2", [{"type": "append-message", "message": message}])
    if isinstance(event, ErrorEvent):
        return _frame("3", event.message)
    if isinstance(event, FinishEvent):
        return _frame("d", {"finishReason": event.finish_reason})
    raise TypeError(f"not a wire event: {type(event).__name__}")


def decode_line(line: bytes | str) -> Any:
    """Parse one wire line back into a WireEvent."""
    if isinstance(line, bytes):
        line = line.decode("utf-8")
    code, sep, raw = line.rstrip("\n").partition(":")
    kind = _KIND_BY_CODE.get(code)
    if not sep or kind is None:
        raise ValueError(f"unknown wire line: {line!r}")
    payload = json.loads(raw)
    if kind == "text-delta":
        return TextDelta(text=payload)
    if kind == "reasoning-delta":
        return ReasoningDelta(text=payload)
    if kind == "start":
        return StartEvent(message_id=payload["messageId"])
    if kind == "append-message":
        return AppendMessage(message=json.loads(payload[0]["message"]))
    if kind == "error":
        return ErrorEvent(message=payload)
    return FinishEvent(finish_reason=payload.get("finishReason", "stop"))


def decode_body(body: bytes) -> list[Any]:
    return [decode_line(line) for line in body.splitlines() if line.strip()]


async def _aclose(iterator: Any) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        await aclose()


class SmoothingPolicy:
    """Re-chunks text and reasoning deltas on boundaries (word or line) for steadier rendering.

    Presentation only: fragments are buffered, never dropped or reordered. The
    buffer is flushed whenever the delta kind changes, a non-delta event arrives,
    or the source ends.
    """

    def __init__(self, chunking: str = "word", delay_ms: int = 10) -> None:
        self._regex = re.compile(_CHUNK_PATTERNS.get(chunking, chunking), re.MULTILINE)
        self._delay = max(delay_ms, 0) / 1000.0

    def _split(self, buffer: str) -> tuple[list[str], str]:
        chunks: list[str] = []
        while True:
            m = self._regex.search(buffer)
            if m is None or m.end() == 0:
                return chunks, buffer
            chunks.append(buffer[: m.end()])
            buffer = buffer[m.end() :]

    async def apply(self, events: AsyncIterable[Any]) -> AsyncIterator[Any]:
        buffer = ""
        delta_cls: type | None = None
        try:
            async for event in events:
                if isinstance(event, (TextDelta, ReasoningDelta)):
                    if delta_cls is not None and type(event) is not delta_cls and buffer:
                        yield delta_cls(text=buffer)
                        buffer = ""
                    delta_cls = type(event)
                    chunks, buffer = self._split(buffer + event.text)
                    for chunk in chunks:
                        yield delta_cls(text=chunk)
                        if self._delay:
                            await asyncio.sleep(self._delay)
                    continue
                if buffer and delta_cls is not None:
                    yield delta_cls(text=buffer)
                    buffer = ""
                yield event
            if buffer and delta_cls is not None:
                yield delta_cls(text=buffer)
        finally:
            await _aclose(events)


class DataStreamMultiplexer:
    """Turns a source of WireEvents into the byte sequence of one HTTP response body.

    A framed stream starts with `f` and ends with exactly one terminal line:
    `d` on success, or the fixed error line when the source fails or yields an
    ErrorEvent. The multiplexer is single-use.
    """

    def __init__(
        self,
        source: AsyncIterable[Any] | None,
        *,
        message_id: str | None = None,
        smoothing: SmoothingPolicy | None = None,
        error_message: str = DEFAULT_ERROR_MESSAGE,
        framed: bool = True,
    ) -> None:
        self._source = source
        self._message_id = message_id
        self._smoothing = smoothing
        self._error_message = error_message
        self._framed = framed and message_id is not None
        self._consumed = False

    @classmethod
    def from_producer(
        cls,
        producer: Any,
        *,
        smoothing: SmoothingPolicy | None = None,
        error_message: str = DEFAULT_ERROR_MESSAGE,
    ) -> "DataStreamMultiplexer":
        return cls(
            producer.events(),
            message_id=producer.message_id,
            smoothing=smoothing,
            error_message=error_message,
        )

    @classmethod
    def empty(cls) -> "DataStreamMultiplexer":
        """No producer: the body completes immediately with zero bytes."""
        return cls(None, framed=False)

    @classmethod
    def one_shot(cls, events: Iterable[Any]) -> "DataStreamMultiplexer":
        """A fixed, already-complete list of events (e.g. a restored message)."""
        fixed = list(events)

        async def _replay() -> AsyncIterator[Any]:
            for event in fixed:
                yield event

        return cls(_replay(), framed=False)

    def error_frame(self) -> bytes:
        return encode_event(ErrorEvent(message=self._error_message))

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self.stream()

    async def stream(self) -> AsyncIterator[bytes]:
        if self._consumed:
            raise RuntimeError("DataStreamMultiplexer can only be consumed once")
        self._consumed = True
        if self._source is None:
            return
        events: AsyncIterable[Any] = self._source
        if self._smoothing is not None:
            events = self._smoothing.apply(events)
        if self._framed:
            yield encode_event(StartEvent(message_id=self._message_id))
        try:
            async for event in events:
                if isinstance(event, ErrorEvent):
                    logger.warning(
                        "stream terminated by producer error",
                        extra={"message_id": self._message_id, "error": event.detail},
                    )
                    yield self.error_frame()
                    return
                yield encode_event(event)
        except Exception as e:
            logger.exception(
                "producer raised past the stream boundary",
                extra={"message_id": self._message_id, "error": str(e)},
            )
            yield self.error_frame()
            return
        finally:
            await _aclose(events)
            if events is not self._source:
                await _aclose(self._source)
        if self._framed:
            yield encode_event(FinishEvent())
