"""LM Studio native API: stream message.delta and reasoning.delta. See https://lmstudio.ai/docs/developer/rest."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from prompt_feedback.models.streaming import EngineDelta

logger = logging.getLogger(__name__)

_DELTA_KINDS = {"message.delta": "text", "reasoning.delta": "reasoning"}


class LMStudioStreamError(RuntimeError):
    """The server sent an `error` event in the middle of the stream."""


def _native_base_url(openai_base_url: str) -> str:
    """Convert OpenAI-compat base (e.g. http://localhost:1234/v1) to LM Studio native root."""
    u = (openai_base_url or "").rstrip("/")
    if u.endswith("/v1"):
        u = u[:-3]
    return u.rstrip("/") or "http://localhost:1234"


def _parse_sse_block(block: bytes) -> tuple[str | None, dict[str, Any] | None]:
    """Return (event type, data) for one SSE block; (None, None) when incomplete."""
    event_type: str | None = None
    data: dict[str, Any] | None = None
    for line in block.split(b"\n"):
        line = line.strip()
        if line.startswith(b"event:"):
            event_type = line[6:].strip().decode("utf-8", errors="replace")
        elif line.startswith(b"data:"):
            raw = line[5:].strip().decode("utf-8", errors="replace")
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug("skipping malformed SSE data", extra={"event": event_type})
                data = None
    return event_type, data


class LMStudioEngine:
    """LM Studio /api/v1/chat with stream=True."""

    def __init__(
        self,
        base_url: str,
        model_name: str,
        api_key: str = "",
        reasoning: str = "on",
        timeout: float = 120.0,
    ) -> None:
        self._root = _native_base_url(base_url)
        self._model_name = model_name
        self._api_key = api_key
        self._reasoning = reasoning
        self._timeout = timeout

    @property
    def model_name(self) -> str:
        return self._model_name

    def stream(self, prompt: str, *, system: str | None = None) -> AsyncIterator[EngineDelta]:
        async def _stream() -> AsyncIterator[EngineDelta]:
            url = f"{self._root}/api/v1/chat"
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            body: dict[str, Any] = {
                "model": self._model_name,
                "input": prompt,
                "stream": True,
                "reasoning": self._reasoning,
            }
            if system:
                body["system_prompt"] = system
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                async with client.stream("POST", url, json=body, headers=headers) as resp:
                    resp.raise_for_status()
                    buf = b""
                    async for chunk in resp.aiter_bytes():
                        buf += chunk
                        while b"\n\n" in buf:
                            block, buf = buf.split(b"\n\n", 1)
                            if not block.strip():
                                continue
                            event_type, data = _parse_sse_block(block)
                            if not event_type or data is None:
                                continue
                            if event_type == "error":
                                msg = (data.get("error") or {}).get("message", "")
                                raise LMStudioStreamError(msg or "LM Studio stream error")
                            kind = _DELTA_KINDS.get(event_type)
                            content = data.get("content") or ""
                            if kind and content:
                                yield EngineDelta(kind, content)

        return _stream()


def is_lm_studio_native_url(base_url: str) -> bool:
    """Heuristic: default LM Studio port or path contains api/v1."""
    if not base_url:
        return False
    return "1234" in base_url or "/api/v1" in base_url
