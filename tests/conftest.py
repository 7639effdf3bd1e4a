"""Shared fixtures for chat-relay tests."""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path
from typing import Callable

import httpx
import pytest

from chat_relay.relay.client import TimeoutMode
from chat_relay.relay.events import EventEmitter
from chat_relay.types import ProxyConfig, StreamEvent


class MockUpstream:
    """Fake upstream server behind httpx.MockTransport.

    Every client it hands out routes requests to ``handler``; the requests and
    the (proxy, mode) pairs the relay asked for are recorded.
    """

    def __init__(self, handler: Callable[[httpx.Request], object] | None = None):
        self.handler = handler or (lambda request: httpx.Response(200, text="ok"))
        self.requests: list[httpx.Request] = []
        self.factory_calls: list[tuple[ProxyConfig | None, TimeoutMode]] = []

    def _handle(self, request: httpx.Request):
        self.requests.append(request)
        return self.handler(request)

    def factory(self, proxy: ProxyConfig | None, mode: TimeoutMode) -> httpx.AsyncClient:
        self.factory_calls.append((proxy, mode))
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self._handle),
            follow_redirects=True,
        )


class EventRecorder:
    """Listener that keeps every StreamEvent it is handed."""

    def __init__(self):
        self.events: list[StreamEvent] = []

    def __call__(self, event: StreamEvent) -> None:
        self.events.append(event)

    def for_stream(self, stream_id: str) -> list[StreamEvent]:
        return [e for e in self.events if e.stream_id == stream_id]

    def terminal(self, stream_id: str) -> list[StreamEvent]:
        return [e for e in self.for_stream(stream_id) if e.terminal]

    async def wait_terminal(self, stream_id: str, timeout: float = 2.0) -> StreamEvent:
        async def _wait():
            while not self.terminal(stream_id):
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_wait(), timeout)
        # Let the pump's cleanup run before the test inspects the registry.
        await asyncio.sleep(0.01)
        return self.terminal(stream_id)[0]

    async def wait_data(self, stream_id: str, count: int = 1, timeout: float = 2.0) -> None:
        async def _wait():
            while len([e for e in self.for_stream(stream_id) if not e.terminal]) < count:
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_wait(), timeout)


async def chunked(*chunks: bytes, delay: float = 0.0):
    """Async body yielding *chunks* one at a time."""
    for chunk in chunks:
        if delay:
            await asyncio.sleep(delay)
        yield chunk


@pytest.fixture
def upstream() -> MockUpstream:
    return MockUpstream()


@pytest.fixture
def emitter() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def recorder(emitter) -> EventRecorder:
    rec = EventRecorder()
    emitter.add_listener(rec)
    return rec


@pytest.fixture
def tmp_store_dir():
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


@pytest.fixture
def tmp_sqlite_db(tmp_store_dir):
    return tmp_store_dir / "test_store.db"
