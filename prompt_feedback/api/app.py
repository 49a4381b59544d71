"""FastAPI application: wiring, lifespan and error mapping."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from prompt_feedback.api.auth import RedisSessionAuth
from prompt_feedback.api.routes import router
from prompt_feedback.config.loader import Config, get_config
from prompt_feedback.core.errors import FeedbackError
from prompt_feedback.core.multiplexer import SmoothingPolicy
from prompt_feedback.core.pipeline import SessionPipeline
from prompt_feedback.core.registry import StreamIdRegistry
from prompt_feedback.core.resumption import ResumptionCoordinator
from prompt_feedback.models.gateway import ModelGateway
from prompt_feedback.storage.base import SessionAuth
from prompt_feedback.storage.redis_store import RedisChatStore

logger = logging.getLogger(__name__)


def smoothing_from_config(config: Config) -> SmoothingPolicy | None:
    if not config.smoothing.enabled:
        return None
    return SmoothingPolicy(config.smoothing.chunking, delay_ms=config.smoothing.delay_ms)


async def build_pipeline(config: Config) -> tuple[SessionPipeline, list]:
    """Construct the pipeline and everything it owns. Returns (pipeline, closables)."""
    store = RedisChatStore(config.storage.redis_url, key_prefix=config.storage.key_prefix)
    registry = StreamIdRegistry(config.storage.redis_url, key_prefix=config.storage.key_prefix)
    coordinator = await ResumptionCoordinator.create(
        config.resumable, error_message=config.api.error_message
    )
    pipeline = SessionPipeline(
        store=store,
        registry=registry,
        coordinator=coordinator,
        engine=ModelGateway.from_settings(config.model),
        prompts=config.prompts,
        smoothing=smoothing_from_config(config),
        error_message=config.api.error_message,
        staleness_seconds=config.resumable.staleness_seconds,
    )
    logger.info("pipeline ready", extra={"mode": coordinator.mode})
    return pipeline, [coordinator, registry, store]


def create_app(
    config: Config | None = None,
    *,
    pipeline: SessionPipeline | None = None,
    auth: SessionAuth | None = None,
) -> FastAPI:
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        closables: list = []
        if getattr(app.state, "pipeline", None) is None:
            app.state.pipeline, closables = await build_pipeline(config)
        if getattr(app.state, "auth", None) is None:
            session_auth = RedisSessionAuth(
                config.storage.redis_url,
                key_prefix=config.storage.key_prefix,
                cookie_name=config.api.session_cookie,
            )
            app.state.auth = session_auth
            closables.append(session_auth)
        yield
        for resource in closables:
            close = getattr(resource, "aclose", None) or getattr(resource, "close")
            try:
                await close()
            except Exception as e:
                logger.warning(
                    "error during shutdown",
                    extra={"resource": type(resource).__name__, "error": str(e)},
                )

    app = FastAPI(title="Prompt Feedback", version="0.1.0", lifespan=lifespan)
    app.state.config = config
    app.state.pipeline = pipeline
    app.state.auth = auth
    app.include_router(router)

    @app.get("/health")
    async def health(request: Request) -> dict:
        p = request.app.state.pipeline
        return {"status": "ok", "mode": p.coordinator.mode if p else "starting"}

    _register_exception_handlers(app)
    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(FeedbackError)
    async def feedback_error_handler(request: Request, exc: FeedbackError) -> JSONResponse:
        level = logging.ERROR if exc.status_code >= 500 else logging.INFO
        logger.log(level, "request failed", extra={"code": exc.code, "path": request.url.path})
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled exception", extra={"path": request.url.path})
        return JSONResponse(
            status_code=500,
            content={"code": "internal:api", "message": "Something went wrong. Please try again later."},
        )
