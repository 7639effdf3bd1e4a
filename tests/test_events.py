"""Tests for EventEmitter fan-out and subscriptions."""

import asyncio
import logging

import pytest

from chat_relay.relay.events import EventEmitter
from chat_relay.types import EventType, StreamEvent


def _data(stream_id: str, text: str) -> StreamEvent:
    return StreamEvent(stream_id, EventType.DATA, data=text)


class TestListeners:
    def test_listeners_receive_in_emission_order(self):
        emitter = EventEmitter()
        seen = []
        emitter.add_listener(seen.append)
        for text in ("a", "b", "c"):
            emitter.emit(_data("s1", text))
        assert [e.data for e in seen] == ["a", "b", "c"]

    def test_remove_listener(self):
        emitter = EventEmitter()
        seen = []
        remove = emitter.add_listener(seen.append)
        emitter.emit(_data("s1", "a"))
        remove()
        remove()  # idempotent
        emitter.emit(_data("s1", "b"))
        assert len(seen) == 1
        assert emitter.subscriber_count == 0

    def test_failing_listener_does_not_block_others(self, caplog):
        emitter = EventEmitter()
        seen = []

        def broken(event):
            raise RuntimeError("listener broke")

        emitter.add_listener(broken)
        emitter.add_listener(seen.append)
        with caplog.at_level(logging.ERROR):
            emitter.emit(_data("s1", "a"))
        assert len(seen) == 1
        assert "listener failed" in caplog.text


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_subscription_receives_events(self):
        emitter = EventEmitter()
        with emitter.subscribe() as sub:
            assert emitter.subscriber_count == 1
            emitter.emit(_data("s1", "a"))
            emitter.emit(StreamEvent("s1", EventType.END))
            assert sub.pending() == 2
            first = await sub.get()
            second = await sub.get()
        assert first.data == "a"
        assert second.terminal
        assert emitter.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_closed_subscription_gets_nothing(self):
        emitter = EventEmitter()
        sub = emitter.subscribe()
        sub.close()
        emitter.emit(_data("s1", "a"))
        assert await sub.get() is None
        assert sub.pending() == 0

    @pytest.mark.asyncio
    async def test_async_iteration(self):
        emitter = EventEmitter()
        sub = emitter.subscribe()
        for text in ("x", "y"):
            emitter.emit(_data("s1", text))

        received = []
        async for event in sub:
            received.append(event.data)
            if len(received) == 2:
                sub.close()
        assert received == ["x", "y"]

    @pytest.mark.asyncio
    async def test_close_wakes_waiting_iterator(self):
        emitter = EventEmitter()
        sub = emitter.subscribe()
        received = []

        async def consume():
            async for event in sub:
                received.append(event.data)

        task = asyncio.create_task(consume())
        emitter.emit(_data("s1", "before"))
        await asyncio.sleep(0.01)
        sub.close()

        done, _ = await asyncio.wait({task}, timeout=1.0)
        assert task in done
        assert received == ["before"]
        emitter.emit(_data("s1", "after"))
        assert received == ["before"]

    @pytest.mark.asyncio
    async def test_emit_from_another_thread(self):
        emitter = EventEmitter()
        with emitter.subscribe() as sub:
            await asyncio.to_thread(emitter.emit, _data("s1", "threaded"))
            event = await asyncio.wait_for(sub.get(), timeout=1.0)
        assert event.data == "threaded"


def test_event_to_dict_omits_unset_fields():
    assert _data("s1", "hi").to_dict() == {
        "stream_id": "s1", "event_type": "data", "data": "hi",
    }
    assert StreamEvent("s1", EventType.ERROR, error="bad").to_dict() == {
        "stream_id": "s1", "event_type": "error", "error": "bad",
    }
