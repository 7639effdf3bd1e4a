"""Thread-safe event collector for relay activity."""

from __future__ import annotations

import threading
import time
from collections import deque
from datetime import datetime, timezone


class RelayMetrics:
    """Collects structured events from the relay commands.

    Thread-safe: ``record()`` may be called from pump tasks and from request
    handlers concurrently.  Only the most recent ``max_events`` are kept.
    """

    def __init__(self, max_events: int = 1000) -> None:
        self.start_time: float = time.time()
        self._events: deque[dict] = deque(maxlen=max_events)
        self._lock = threading.Lock()
        self._seq = 0
        self._counters: dict[str, int] = {
            "requests": 0,
            "requests_failed": 0,
            "requests_non_2xx": 0,
            "streams_started": 0,
            "streams_rejected": 0,
            "streams_ended": 0,
            "streams_errored": 0,
            "streams_cancelled": 0,
            "proxy_tests": 0,
            "proxy_tests_failed": 0,
        }

    def record(self, event: dict) -> None:
        """Append an event (thread-safe). Adds ``_seq`` and ``ts``."""
        with self._lock:
            event = dict(event)  # shallow copy to avoid caller mutation
            event["_seq"] = self._seq
            if "ts" not in event:
                event["ts"] = datetime.now(timezone.utc).isoformat()
            self._seq += 1
            self._events.append(event)
            self._count(event)

    def _count(self, event: dict) -> None:
        etype = event.get("type")
        if etype == "request":
            self._counters["requests"] += 1
            if event.get("error"):
                self._counters["requests_failed"] += 1
            elif not event.get("success", True):
                self._counters["requests_non_2xx"] += 1
        elif etype == "stream_start":
            if event.get("error"):
                self._counters["streams_rejected"] += 1
            else:
                self._counters["streams_started"] += 1
        elif etype == "stream_end":
            outcome = event.get("outcome")
            if outcome == "end":
                self._counters["streams_ended"] += 1
            elif outcome == "cancelled":
                self._counters["streams_cancelled"] += 1
            else:
                self._counters["streams_errored"] += 1
        elif etype == "proxy_test":
            self._counters["proxy_tests"] += 1
            if event.get("error"):
                self._counters["proxy_tests_failed"] += 1

    def events_since(self, seq: int) -> list[dict]:
        """Return events with ``_seq`` > *seq*."""
        with self._lock:
            return [e for e in self._events if e["_seq"] > seq]

    def snapshot(self) -> dict:
        """Aggregate counters plus the latest sequence number."""
        with self._lock:
            snap: dict = dict(self._counters)
            snap["streams_active"] = max(
                0,
                self._counters["streams_started"]
                - self._counters["streams_ended"]
                - self._counters["streams_errored"]
                - self._counters["streams_cancelled"],
            )
            snap["uptime_s"] = round(time.time() - self.start_time, 1)
            snap["_seq"] = self._seq - 1
            return snap
