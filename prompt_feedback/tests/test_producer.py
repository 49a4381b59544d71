"""Tests for TokenProducer: event order, transcript, failure and cancellation."""

from __future__ import annotations

import asyncio

import pytest

from prompt_feedback.core.events import (
    ErrorEvent,
    ReasoningDelta,
    ReasoningPart,
    TextDelta,
    TextPart,
)
from prompt_feedback.models.producer import CancelToken, TokenProducer
from prompt_feedback.tests.conftest import FakeEngine


@pytest.mark.asyncio
async def test_producer_yields_deltas_in_order_and_reports_transcript():
    engine = FakeEngine(
        [("reasoning", "Level: "), ("reasoning", "beginner"), ("text", "Add "), ("text", "context.")]
    )
    finished = []

    async def on_finish(transcript):
        finished.append(transcript)

    producer = TokenProducer(engine, "prompt", system="sys", message_id="m1", on_finish=on_finish)
    events = [e async for e in producer.events()]
    assert events == [
        ReasoningDelta(text="Level: "),
        ReasoningDelta(text="beginner"),
        TextDelta(text="Add "),
        TextDelta(text="context."),
    ]
    assert engine.calls == [("prompt", "sys")]
    assert len(finished) == 1
    assert finished[0].message_id == "m1"
    assert finished[0].parts == [
        ReasoningPart(reasoning="Level: beginner"),
        TextPart(text="Add context."),
    ]


@pytest.mark.asyncio
async def test_producer_is_single_use():
    producer = TokenProducer(FakeEngine(), "p")
    [e async for e in producer.events()]
    with pytest.raises(RuntimeError):
        producer.events()


@pytest.mark.asyncio
async def test_engine_failure_yields_terminal_error_and_skips_finish():
    finished = []

    async def on_finish(transcript):
        finished.append(transcript)

    engine = FakeEngine([("text", "a "), ("text", "b")], fail_after=1)
    producer = TokenProducer(engine, "p", on_finish=on_finish)
    events = [e async for e in producer.events()]
    assert events[0] == TextDelta(text="a ")
    assert isinstance(events[-1], ErrorEvent)
    assert "engine exploded" in events[-1].detail
    assert finished == []
    assert engine.closed is True


@pytest.mark.asyncio
async def test_cancel_token_aborts_upstream():
    engine = FakeEngine([("text", "first ")], hang=True)
    token = CancelToken()
    producer = TokenProducer(engine, "p", cancel_token=token)
    events = producer.events()
    first = await events.__anext__()
    assert first == TextDelta(text="first ")
    token.cancel("client went away")
    last = await asyncio.wait_for(events.__anext__(), timeout=1)
    assert isinstance(last, ErrorEvent)
    assert "client went away" in last.detail
    with pytest.raises(StopAsyncIteration):
        await events.__anext__()
    assert engine.closed is True


@pytest.mark.asyncio
async def test_cancel_before_first_token():
    engine = FakeEngine([("text", "x")], hang=True)
    token = CancelToken()
    token.cancel("timeout")
    producer = TokenProducer(engine, "p", cancel_token=token)
    events = [e async for e in producer.events()]
    assert len(events) == 1
    assert isinstance(events[0], ErrorEvent)


@pytest.mark.asyncio
async def test_consumer_close_cancels_token_and_engine():
    engine = FakeEngine([("text", "first ")], hang=True)
    producer = TokenProducer(engine, "p")
    events = producer.events()
    await events.__anext__()
    await events.aclose()
    assert producer.cancel_token.cancelled is True
    assert engine.closed is True


@pytest.mark.asyncio
async def test_slow_consumer_holds_back_the_engine():
    engine = FakeEngine([("text", f"{i} ") for i in range(10)])
    producer = TokenProducer(engine, "p", max_buffered=2)
    events = producer.events()
    first = await events.__anext__()
    for _ in range(10):
        await asyncio.sleep(0)
    # one consumed, two queued, one waiting in put()
    assert engine.yielded <= 4
    rest = [e async for e in events]
    assert [e.text for e in [first, *rest]] == [f"{i} " for i in range(10)]
    assert engine.yielded == 10


@pytest.mark.asyncio
async def test_cancel_with_full_buffer_still_ends_with_error():
    engine = FakeEngine([("text", f"{i} ") for i in range(10)])
    producer = TokenProducer(engine, "p", max_buffered=2)
    events = producer.events()
    await events.__anext__()
    for _ in range(10):
        await asyncio.sleep(0)
    producer.cancel_token.cancel("user stop")
    rest = [e async for e in events]
    assert rest == [ErrorEvent(detail="cancelled: user stop")]
    assert engine.closed is True


def test_cancel_token_runs_callbacks_once():
    token = CancelToken()
    calls = []
    token.on_cancel(lambda: calls.append(1))
    token.cancel()
    token.cancel()
    token.on_cancel(lambda: calls.append(2))
    assert calls == [1, 2]
    assert token.reason == "cancelled"
