"""OpenAI or OpenAI-compatible chat completions (OpenAI cloud, Ollama, llama.cpp, vLLM)."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

from openai import AsyncOpenAI

from prompt_feedback.models.streaming import EngineDelta

logger = logging.getLogger(__name__)


def _reasoning_of(delta: Any) -> str | None:
    # Not part of the OpenAI schema; DeepSeek/vLLM use reasoning_content, others reasoning.
    for attr in ("reasoning_content", "reasoning"):
        value = getattr(delta, attr, None)
        if isinstance(value, str) and value:
            return value
    return None


class OpenAICompatEngine:
    """Chat completions with stream=True. Yields text and reasoning deltas."""

    def __init__(
        self,
        api_key: str,
        model_name: str = "gpt-4o",
        base_url: str | None = None,
        timeout: float = 120.0,
    ) -> None:
        self._client = AsyncOpenAI(api_key=api_key or "unset", base_url=base_url, timeout=timeout)
        self._model_name = model_name

    @property
    def model_name(self) -> str:
        return self._model_name

    def stream(self, prompt: str, *, system: str | None = None) -> AsyncIterator[EngineDelta]:
        async def _stream() -> AsyncIterator[EngineDelta]:
            messages: list[dict[str, str]] = []
            if system:
                messages.append({"role": "system", "content": system})
            messages.append({"role": "user", "content": prompt})
            stream = await self._client.chat.completions.create(
                model=self._model_name,
                messages=messages,
                stream=True,
            )
            try:
                async for chunk in stream:
                    delta = chunk.choices[0].delta if chunk.choices else None
                    if delta is None:
                        continue
                    reasoning = _reasoning_of(delta)
                    if reasoning:
                        yield EngineDelta("reasoning", reasoning)
                    if getattr(delta, "content", None):
                        yield EngineDelta("text", delta.content)
            finally:
                # Aborts the HTTP response when the consumer stops early.
                await stream.close()

        return _stream()
