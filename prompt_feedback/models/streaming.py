"""Streaming contract for generation engines.

Every engine backend (OpenAI-compatible chat completions, LM Studio native)
produces an async iteration of `EngineDelta`: ordered text or reasoning
fragments for one prompt. The iteration ends when the engine completes and
raises when the engine fails. Closing the iterator (aclose) must release the
upstream HTTP stream.

- OpenAI Chat Completions stream: delta.content, plus delta.reasoning_content
  or delta.reasoning on servers that expose reasoning.
- LM Studio native SSE: message.delta and reasoning.delta events.

TokenProducer (prompt_feedback.models.producer) turns this into WireEvents.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Literal, Protocol, runtime_checkable

DeltaKind = Literal["text", "reasoning"]


@dataclass(frozen=True)
class EngineDelta:
    kind: DeltaKind
    text: str


@runtime_checkable
class StreamingEngine(Protocol):
    """Protocol for engines that support delta streaming."""

    def stream(self, prompt: str, *, system: str | None = None) -> AsyncIterator[EngineDelta]:
        """Yield deltas in generation order."""
        ...
