"""Session pipeline: validate, register, produce, publish, persist. Shared by every entry point."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import TYPE_CHECKING, AsyncIterable, Callable

from prompt_feedback.core.errors import BadRequest, Forbidden, NotFound, Unauthorized
from prompt_feedback.core.events import FeedbackRecord, Transcript, Visibility, utcnow
from prompt_feedback.core.multiplexer import (
    DEFAULT_ERROR_MESSAGE,
    DataStreamMultiplexer,
    SmoothingPolicy,
)
from prompt_feedback.core.reconstruction import DEFAULT_STALENESS_SECONDS, reconstruct
from prompt_feedback.models.producer import TokenProducer
from prompt_feedback.models.prompts import feedback_system_prompt

if TYPE_CHECKING:
    from prompt_feedback.config.loader import PromptSettings
    from prompt_feedback.core.registry import StreamIdRegistry
    from prompt_feedback.core.resumption import ResumptionCoordinator
    from prompt_feedback.models.streaming import StreamingEngine
    from prompt_feedback.storage.base import ChatStore, User

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class FeedbackRequest:
    chat_id: str | None
    message_id: str | None
    language: str = "en"


class SessionPipeline:
    """Runs one feedback session per request.

    All validation happens before the stream id is registered or the engine
    is called, so a rejected request leaves no trace in the stream log.
    """

    def __init__(
        self,
        *,
        store: ChatStore,
        registry: StreamIdRegistry,
        coordinator: ResumptionCoordinator,
        engine: StreamingEngine,
        prompts: PromptSettings,
        smoothing: SmoothingPolicy | None = None,
        error_message: str = DEFAULT_ERROR_MESSAGE,
        staleness_seconds: float = DEFAULT_STALENESS_SECONDS,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self._store = store
        self._registry = registry
        self._coordinator = coordinator
        self._engine = engine
        self._prompts = prompts
        self._smoothing = smoothing
        self._error_message = error_message
        self._staleness = staleness_seconds
        self._new_id = id_factory

    @property
    def coordinator(self) -> ResumptionCoordinator:
        return self._coordinator

    async def start(self, request: FeedbackRequest, user: User | None) -> AsyncIterable[bytes]:
        if not request.chat_id or not request.message_id:
            raise BadRequest("api", "Parameters chatId, messageId are required.")
        if user is None:
            raise Unauthorized("feedback")
        message = await self._store.get_message(request.message_id)
        if message is None:
            raise NotFound("feedback")
        await self._check_chat_access(request.chat_id, user)
        if message.chat_id != request.chat_id:
            raise NotFound("feedback")
        content = message.first_text()
        if not content:
            raise BadRequest("api", "Message content is missing or invalid.")

        stream_id = self._new_id()
        await self._registry.register(stream_id, request.chat_id)
        producer = TokenProducer(
            self._engine,
            content,
            system=feedback_system_prompt(request.language, self._prompts),
            message_id=self._new_id(),
            on_finish=partial(self._save_feedback, request.chat_id, request.message_id),
        )
        logger.info(
            "feedback stream started",
            extra={
                "stream_id": stream_id,
                "chat_id": request.chat_id,
                "message_id": request.message_id,
                "language": request.language,
            },
        )

        def build_sequence() -> AsyncIterable[bytes]:
            return DataStreamMultiplexer.from_producer(
                producer, smoothing=self._smoothing, error_message=self._error_message
            ).stream()

        return await self._coordinator.publish_and_serve(
            stream_id, build_sequence, chat_id=request.chat_id
        )

    async def _check_chat_access(self, chat_id: str, user: User) -> None:
        chat = await self._store.get_chat(chat_id)
        if chat is None:
            raise NotFound("chat")
        if chat.visibility is Visibility.PRIVATE and chat.user_id != user.id:
            raise Forbidden("chat")

    async def _save_feedback(self, chat_id: str, message_id: str, transcript: Transcript) -> None:
        # The client already has the stream; a failed write is only logged.
        try:
            if not transcript.parts:
                raise ValueError("No assistant message found!")
            record = FeedbackRecord(
                id=self._new_id(),
                message_id=message_id,
                chat_id=chat_id,
                parts=transcript.parts,
            )
            await self._store.save_feedback(record)
        except Exception as e:
            logger.exception(
                "Failed to save feedback",
                extra={"chat_id": chat_id, "message_id": message_id, "error": str(e)},
            )

    async def resume(
        self,
        chat_id: str | None,
        user: User | None,
        requested_at: datetime | None = None,
    ) -> AsyncIterable[bytes] | None:
        """Body for a resume request, or None when this deployment cannot resume at all."""
        requested_at = requested_at or utcnow()
        if not self._coordinator.available:
            return None
        if not chat_id:
            raise BadRequest("api", "Parameter chatId is required.")
        if user is None:
            raise Unauthorized("chat")
        await self._check_chat_access(chat_id, user)

        stream_id = await self._registry.tail(chat_id)
        if stream_id is None:
            return DataStreamMultiplexer.empty().stream()
        stream = await self._coordinator.resume(stream_id)
        if stream is not None:
            return stream
        messages = await self._store.get_messages_by_chat(chat_id)
        return reconstruct(messages, requested_at, self._staleness).stream()
