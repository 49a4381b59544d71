"""Feedback endpoints. Thin adapters over SessionPipeline."""

from __future__ import annotations

import json
import logging
from typing import AsyncIterable

from fastapi import APIRouter, Request, Response
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ValidationError

from prompt_feedback.core.errors import BadRequest
from prompt_feedback.core.events import utcnow
from prompt_feedback.core.multiplexer import MEDIA_TYPE, STREAM_HEADERS
from prompt_feedback.core.pipeline import SessionPipeline
from prompt_feedback.api.schemas import LegacyRequestBody, PostRequestBody
from prompt_feedback.storage.base import SessionAuth

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Feedback"])


def _pipeline(request: Request) -> SessionPipeline:
    return request.app.state.pipeline


def _auth(request: Request) -> SessionAuth:
    return request.app.state.auth


async def _parse_body(request: Request, model: type[BaseModel]) -> BaseModel:
    try:
        data = await request.json()
        return model.model_validate(data)
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
        logger.info("rejected request body", extra={"path": request.url.path, "error": str(e)})
        raise BadRequest("api") from e


def _stream_response(body: AsyncIterable[bytes]) -> StreamingResponse:
    return StreamingResponse(body, status_code=200, media_type=MEDIA_TYPE, headers=STREAM_HEADERS)


@router.post("/feedback", summary="Start a feedback stream")
async def start_feedback(request: Request) -> StreamingResponse:
    body = await _parse_body(request, PostRequestBody)
    user = await _auth(request).current_user(request)
    stream = await _pipeline(request).start(body.to_request(), user)
    return _stream_response(stream)


@router.post("/chat/feedback", summary="Start a feedback stream (flat body)")
async def start_feedback_legacy(request: Request) -> StreamingResponse:
    body = await _parse_body(request, LegacyRequestBody)
    default_language = request.app.state.config.prompts.default_language
    user = await _auth(request).current_user(request)
    stream = await _pipeline(request).start(body.to_request(default_language), user)
    return _stream_response(stream)


@router.get("/feedback", summary="Resume the latest feedback stream of a chat")
async def resume_feedback(request: Request, chatId: str | None = None) -> Response:
    requested_at = utcnow()
    pipeline = _pipeline(request)
    # Auth is resolved lazily: a deployment without resumption answers 204 first.
    user = None
    if pipeline.coordinator.available and chatId:
        user = await _auth(request).current_user(request)
    stream = await pipeline.resume(chatId, user, requested_at=requested_at)
    if stream is None:
        return Response(status_code=204)
    return _stream_response(stream)
