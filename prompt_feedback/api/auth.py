"""Caller identity: sessions stored in Redis, looked up by cookie or bearer token."""

from __future__ import annotations

import json
import logging
import secrets
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from prompt_feedback.core.errors import StorageUnavailable
from prompt_feedback.storage.base import User

logger = logging.getLogger(__name__)

SESSION_PREFIX = "{prefix}:session:"
SESSION_TTL = 86400  # 24h
DEFAULT_COOKIE_NAME = "feedback_sid"


def session_id_from_request(request: Any, cookie_name: str = DEFAULT_COOKIE_NAME) -> str | None:
    sid = request.cookies.get(cookie_name)
    if sid:
        return sid
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


class RedisSessionAuth:
    """Resolves the current user from a session record `{user_id, login, role}`."""

    def __init__(
        self,
        redis_url: str,
        key_prefix: str = "feedback",
        cookie_name: str = DEFAULT_COOKIE_NAME,
    ) -> None:
        self._redis_url = redis_url
        self._session_prefix = SESSION_PREFIX.format(prefix=key_prefix)
        self._cookie_name = cookie_name
        self._client: aioredis.Redis | None = None

    async def connect(self) -> None:
        if self._client is None:
            try:
                self._client = aioredis.from_url(self._redis_url, decode_responses=True)
                await self._client.ping()
            except (RedisError, OSError) as e:
                self._client = None
                raise StorageUnavailable("auth") from e

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def create_session(self, user: User) -> str:
        """Store a session for user. Returns session_id."""
        await self.connect()
        sid = secrets.token_urlsafe(32)
        data = {"user_id": user.id, "login": user.login, "role": user.role}
        try:
            await self._client.set(self._session_prefix + sid, json.dumps(data), ex=SESSION_TTL)
        except (RedisError, OSError) as e:
            raise StorageUnavailable("auth") from e
        return sid

    async def current_user(self, request: Any) -> User | None:
        sid = session_id_from_request(request, self._cookie_name)
        if not sid:
            return None
        await self.connect()
        try:
            raw = await self._client.get(self._session_prefix + sid)
        except (RedisError, OSError) as e:
            raise StorageUnavailable("auth") from e
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("corrupt session record")
            return None
        if not data.get("user_id"):
            return None
        return User(id=data["user_id"], login=data.get("login", ""), role=data.get("role", "user"))
