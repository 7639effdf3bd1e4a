"""Stream event delivery to UI subscribers.

Events are pushed synchronously from the pump that produced them, so the
order a subscriber observes for one ``stream_id`` is exactly the emission
order.  Events of different streams may interleave.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterator
from typing import Callable

from ..types import StreamEvent

logger = logging.getLogger(__name__)

STREAM_EVENT_NAME = "stream-event"

Listener = Callable[[StreamEvent], None]


class Subscription:
    """Queue-backed view of the emitter; iterate with ``async for``."""

    def __init__(self, emitter: EventEmitter) -> None:
        self._emitter = emitter
        # None marks the end of the subscription.
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        self._loop = asyncio.get_running_loop()
        self.closed = False

    def _push(self, event: StreamEvent | None) -> None:
        if self._loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._queue.put_nowait(event)
        else:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    async def get(self) -> StreamEvent | None:
        """Next event, or None once the subscription is closed."""
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._emitter._unsubscribe(self)
            self._push(None)

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class EventEmitter:
    """Fan-out of StreamEvents to listeners and subscriptions."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger
        self._lock = threading.Lock()
        self._listeners: list[Listener] = []
        self._subscriptions: list[Subscription] = []

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a callback; returns a function that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return remove

    def subscribe(self) -> Subscription:
        """Open a subscription (must be called from a running event loop)."""
        sub = Subscription(self)
        with self._lock:
            self._subscriptions.append(sub)
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._listeners) + len(self._subscriptions)

    def emit(self, event: StreamEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
            subscriptions = list(self._subscriptions)

        self._log.debug(
            "%s %s %s", STREAM_EVENT_NAME, event.stream_id, event.event_type.value,
        )
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                self._log.exception("Stream event listener failed for %s", event.stream_id)
        for sub in subscriptions:
            sub._push(event)
