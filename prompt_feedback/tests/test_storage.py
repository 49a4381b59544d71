"""Tests for the Redis chat store and session auth with mocked Redis."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from prompt_feedback.api.auth import RedisSessionAuth, session_id_from_request
from prompt_feedback.core.errors import StorageUnavailable
from prompt_feedback.core.events import Chat, FeedbackRecord, MessageRole, StoredMessage, TextPart
from prompt_feedback.storage.base import ChatStore, User
from prompt_feedback.storage.redis_store import RedisChatStore


def _mock_client():
    client = MagicMock()
    client.ping = AsyncMock()
    client.aclose = AsyncMock()
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[True, 1])
    client.pipeline = MagicMock(return_value=pipe)
    return client, pipe


def _message_json(message_id: str, role: str = "user", text: str = "hi") -> str:
    return json.dumps(
        {
            "id": message_id,
            "chat_id": "c1",
            "role": role,
            "parts": [{"type": "text", "text": text}],
            "created_at": "2026-03-01T12:00:00+00:00",
        }
    )


@pytest.mark.asyncio
async def test_get_message_decodes_parts():
    client, _ = _mock_client()
    client.get = AsyncMock(side_effect=[_message_json("m1"), None])
    with patch("prompt_feedback.storage.redis_store.aioredis") as m:
        m.from_url = MagicMock(return_value=client)
        store = RedisChatStore("redis://fake:6379/0", key_prefix="t")
        msg = await store.get_message("m1")
        missing = await store.get_message("m2")
    assert msg.first_text() == "hi"
    assert msg.role is MessageRole.USER
    assert missing is None
    client.get.assert_any_call("t:message:m1")
    assert isinstance(store, ChatStore)


@pytest.mark.asyncio
async def test_get_messages_by_chat_keeps_order_and_skips_gaps():
    client, _ = _mock_client()
    client.lrange = AsyncMock(return_value=["m1", "m2", "m3"])
    client.mget = AsyncMock(
        return_value=[_message_json("m1"), None, _message_json("m3", role="assistant", text="ok")]
    )
    with patch("prompt_feedback.storage.redis_store.aioredis") as m:
        m.from_url = MagicMock(return_value=client)
        store = RedisChatStore("redis://fake:6379/0", key_prefix="t")
        messages = await store.get_messages_by_chat("c1")
    assert [msg.id for msg in messages] == ["m1", "m3"]
    client.mget.assert_awaited_once_with(["t:message:m1", "t:message:m2", "t:message:m3"])


@pytest.mark.asyncio
async def test_save_feedback_writes_once_and_indexes_by_message():
    client, pipe = _mock_client()
    record = FeedbackRecord(id="f1", message_id="m1", chat_id="c1", parts=[TextPart(text="x")])
    with patch("prompt_feedback.storage.redis_store.aioredis") as m:
        m.from_url = MagicMock(return_value=client)
        store = RedisChatStore("redis://fake:6379/0", key_prefix="t")
        await store.save_feedback(record)
    key, value = pipe.set.call_args.args
    assert key == "t:feedback:f1"
    assert json.loads(value)["parts"] == [{"type": "text", "text": "x"}]
    assert pipe.set.call_args.kwargs == {"nx": True}
    pipe.rpush.assert_called_once_with("t:message_feedback:m1", "f1")


@pytest.mark.asyncio
async def test_store_unreachable_raises_storage_unavailable():
    client, _ = _mock_client()
    client.ping = AsyncMock(side_effect=RedisConnectionError("down"))
    with patch("prompt_feedback.storage.redis_store.aioredis") as m:
        m.from_url = MagicMock(return_value=client)
        store = RedisChatStore("redis://fake:6379/0")
        with pytest.raises(StorageUnavailable) as exc:
            await store.get_chat("c1")
    assert exc.value.status_code == 503


def test_session_id_from_cookie_or_bearer():
    by_cookie = SimpleNamespace(cookies={"feedback_sid": "abc"}, headers={})
    by_header = SimpleNamespace(cookies={}, headers={"authorization": "Bearer xyz"})
    anonymous = SimpleNamespace(cookies={}, headers={})
    assert session_id_from_request(by_cookie) == "abc"
    assert session_id_from_request(by_header) == "xyz"
    assert session_id_from_request(anonymous) is None


@pytest.mark.asyncio
async def test_session_auth_resolves_user():
    client, _ = _mock_client()
    stored: dict[str, str] = {}

    async def _set(key, value, ex=None):
        stored[key] = value

    async def _get(key):
        return stored.get(key)

    client.set = AsyncMock(side_effect=_set)
    client.get = AsyncMock(side_effect=_get)
    with patch("prompt_feedback.api.auth.aioredis") as m:
        m.from_url = MagicMock(return_value=client)
        auth = RedisSessionAuth("redis://fake:6379/0", key_prefix="t")
        sid = await auth.create_session(User(id="u1", login="alice"))
        request = SimpleNamespace(cookies={"feedback_sid": sid}, headers={})
        user = await auth.current_user(request)
        unknown = await auth.current_user(SimpleNamespace(cookies={"feedback_sid": "nope"}, headers={}))
    assert user == User(id="u1", login="alice")
    assert unknown is None
    assert f"t:session:{sid}" in stored


@pytest.mark.asyncio
async def test_save_message_and_read_feedback_back():
    client, pipe = _mock_client()
    record = FeedbackRecord(id="f1", message_id="m1", chat_id="c1", parts=[TextPart(text="x")])
    client.lrange = AsyncMock(return_value=["f1"])
    client.mget = AsyncMock(return_value=[record.model_dump_json()])
    with patch("prompt_feedback.storage.redis_store.aioredis") as m:
        m.from_url = MagicMock(return_value=client)
        store = RedisChatStore("redis://fake:6379/0", key_prefix="t")
        await store.save_message(
            StoredMessage(id="m1", chat_id="c1", role=MessageRole.USER, parts=[TextPart(text="hi")])
        )
        feedback = await store.get_feedback_for_message("m1")
        client.set = AsyncMock()
        await store.save_chat(Chat(id="c1", user_id="u1"))
    assert client.set.call_args.args[0] == "t:chat:c1"
    pipe.rpush.assert_called_once_with("t:chat_messages:c1", "m1")
    assert feedback == [record]
