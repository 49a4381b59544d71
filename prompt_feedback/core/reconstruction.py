"""Fallback for resume requests when nothing is live on the side-channel."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Sequence

from prompt_feedback.core.events import AppendMessage, MessageRole, StoredMessage
from prompt_feedback.core.multiplexer import DataStreamMultiplexer

logger = logging.getLogger(__name__)

DEFAULT_STALENESS_SECONDS = 15.0


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def message_payload(message: StoredMessage) -> dict[str, Any]:
    """Client-facing shape of a stored message (camelCase like the chat UI expects)."""
    return {
        "id": message.id,
        "chatId": message.chat_id,
        "role": message.role.value,
        "parts": [p.model_dump(mode="json") for p in message.parts],
        "createdAt": _aware(message.created_at).isoformat(),
    }


def reconstruct(
    messages: Sequence[StoredMessage],
    requested_at: datetime,
    staleness_seconds: float = DEFAULT_STALENESS_SECONDS,
) -> DataStreamMultiplexer:
    """Replay the last generated message if it is recent enough, else an empty stream.

    A completion older than `staleness_seconds` is assumed to have reached the
    original requester already. Elapsed time is counted in whole seconds, so
    anything under 16s still replays at the default threshold.
    """
    if not messages:
        return DataStreamMultiplexer.empty()
    latest = messages[-1]
    if latest.role is not MessageRole.ASSISTANT:
        return DataStreamMultiplexer.empty()
    elapsed = int((_aware(requested_at) - _aware(latest.created_at)).total_seconds())
    if elapsed > staleness_seconds:
        logger.debug(
            "last message is stale, nothing to restore",
            extra={"message_id": latest.id, "elapsed_seconds": elapsed},
        )
        return DataStreamMultiplexer.empty()
    logger.info("restoring last message", extra={"message_id": latest.id})
    return DataStreamMultiplexer.one_shot([AppendMessage(message=message_payload(latest))])
