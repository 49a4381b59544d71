"""Model Gateway: picks the engine backend from config and exposes one delta stream."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, AsyncIterator

from prompt_feedback.models import lm_studio
from prompt_feedback.models.lm_studio import LMStudioEngine
from prompt_feedback.models.openai_compat import OpenAICompatEngine
from prompt_feedback.models.streaming import EngineDelta, StreamingEngine

if TYPE_CHECKING:
    from prompt_feedback.config.loader import ModelSettings

logger = logging.getLogger(__name__)


class ModelGateway:
    """Single entrypoint for generation. Reasoning deltas pass through unless disabled."""

    def __init__(self, engine: StreamingEngine, *, send_reasoning: bool = True) -> None:
        self._engine = engine
        self._send_reasoning = send_reasoning

    @classmethod
    def from_settings(cls, settings: ModelSettings) -> "ModelGateway":
        provider = (settings.provider or "openai").lower()
        base_url = settings.openai_base_url
        if provider == "lm_studio" or (
            provider == "auto" and base_url and lm_studio.is_lm_studio_native_url(base_url)
        ):
            engine: StreamingEngine = LMStudioEngine(
                base_url or "http://localhost:1234/v1",
                settings.name,
                api_key=settings.openai_api_key,
                reasoning=settings.lm_studio_reasoning,
                timeout=settings.request_timeout_seconds,
            )
        else:
            # OpenAI-compat base URL must end with /v1 for the chat/completions path
            if base_url and not base_url.rstrip("/").endswith("/v1"):
                base_url = base_url.rstrip("/") + "/v1"
            engine = OpenAICompatEngine(
                api_key=settings.openai_api_key,
                model_name=settings.name,
                base_url=base_url,
                timeout=settings.request_timeout_seconds,
            )
        logger.info(
            "model gateway ready",
            extra={"provider": provider, "model": settings.name},
        )
        return cls(engine, send_reasoning=settings.send_reasoning)

    def stream(self, prompt: str, *, system: str | None = None) -> AsyncIterator[EngineDelta]:
        upstream = self._engine.stream(prompt, system=system)
        if self._send_reasoning:
            return upstream

        async def _text_only() -> AsyncIterator[EngineDelta]:
            try:
                async for delta in upstream:
                    if delta.kind == "text":
                        yield delta
            finally:
                await upstream.aclose()

        return _text_only()
