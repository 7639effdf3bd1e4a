"""Streaming relay: forward a response body to subscribers as it arrives.

``start_stream`` returns once response headers are in.  A detached pump task
then owns the response and emits, per stream_id, zero or more ``data`` events
followed by exactly one terminal ``end`` or ``error`` event.

In-flight pumps are tracked by stream_id so a caller can cancel one; a
cancelled stream still ends with a single ``error`` event.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

import httpx

from ..types import (
    EventType,
    HttpMethod,
    HTTPStatusError,
    StreamEvent,
    StreamRequestSpec,
    TransportError,
)
from .client import ClientFactory, TimeoutMode, build_client
from .events import EventEmitter
from .metrics import RelayMetrics
from .oneshot import build_request, transport_error

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Stream cancelled"


@dataclass(eq=False)
class _ActiveStream:
    stream_id: str
    client: httpx.AsyncClient
    response: httpx.Response
    started: float = field(default_factory=time.monotonic)
    task: asyncio.Task | None = None
    finished: bool = False  # terminal event already emitted
    closed: bool = False
    chunks: int = 0
    skipped: int = 0


class StreamRelay:
    """Starts streams and keeps the registry of their pump tasks."""

    def __init__(
        self,
        emitter: EventEmitter,
        *,
        client_factory: ClientFactory = build_client,
        metrics: RelayMetrics | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.emitter = emitter
        self.metrics = metrics
        self._client_factory = client_factory
        self._log = log or logger
        self._streams: dict[str, _ActiveStream] = {}
        # Every running pump, including ones displaced by a reused stream_id.
        self._live: list[_ActiveStream] = []

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def active_streams(self) -> list[str]:
        return [sid for sid, s in self._streams.items() if not s.finished]

    def is_active(self, stream_id: str) -> bool:
        stream = self._streams.get(stream_id)
        return stream is not None and not stream.finished

    def cancel(self, stream_id: str) -> bool:
        """Request cancellation of a live stream. False if none is running."""
        stream = self._streams.get(stream_id)
        if stream is None or stream.finished or stream.task is None or stream.task.done():
            return False
        self._log.info("Cancelling stream %s", stream_id)
        stream.task.cancel()
        return True

    async def shutdown(self) -> None:
        """Cancel every live stream and wait for the pumps to finish."""
        streams = list(self._live)
        tasks = [s.task for s in streams if s.task is not None and not s.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for stream in streams:
            await self._close(stream)
        self._streams.clear()
        self._live.clear()

    # ------------------------------------------------------------------
    # Stream lifecycle
    # ------------------------------------------------------------------

    def _record(self, event: dict) -> None:
        if self.metrics:
            self.metrics.record(event)

    def _emit(self, stream_id: str, event_type: EventType, *, data: str | None = None,
              error: str | None = None) -> None:
        self.emitter.emit(StreamEvent(stream_id, event_type, data=data, error=error))

    def _finish(self, stream: _ActiveStream, outcome: str, error: str | None = None) -> None:
        """Emit the single terminal event for *stream*."""
        if stream.finished:
            return
        stream.finished = True
        if outcome == "end":
            self._emit(stream.stream_id, EventType.END)
        else:
            self._emit(stream.stream_id, EventType.ERROR, error=error)

        elapsed_ms = round((time.monotonic() - stream.started) * 1000, 1)
        self._log.info(
            "Stream %s finished (%s): %d chunks, %d skipped, %sms",
            stream.stream_id, outcome, stream.chunks, stream.skipped, elapsed_ms,
        )
        self._record({
            "type": "stream_end", "stream_id": stream.stream_id, "outcome": outcome,
            "chunks": stream.chunks, "skipped": stream.skipped, "elapsed_ms": elapsed_ms,
        })

    async def _close(self, stream: _ActiveStream) -> None:
        if stream.closed:
            return
        stream.closed = True
        try:
            await stream.response.aclose()
        except (httpx.HTTPError, httpx.StreamError, OSError) as exc:
            self._log.warning("Stream %s: closing response failed: %s", stream.stream_id, exc)
        finally:
            await stream.client.aclose()

    async def start_stream(self, spec: StreamRequestSpec) -> str:
        """Send the request and detach a pump for the body.

        Validation failures raise with no event.  A failed exchange or a
        non-2xx status emits one ``error`` event and raises.
        """
        stream_id = spec.stream_id
        method = HttpMethod.parse(spec.method)
        client = self._client_factory(spec.proxy, TimeoutMode.UNBOUNDED)

        try:
            request = build_request(client, method, spec.url, spec.headers, spec.body)
            response = await client.send(request, stream=True)
        except (TransportError, httpx.HTTPError) as exc:
            await client.aclose()
            error = exc if isinstance(exc, TransportError) else transport_error(exc)
            self._log.warning("Stream %s failed before response: %s", stream_id, error)
            self._emit(stream_id, EventType.ERROR, error=error.message)
            self._record({"type": "stream_start", "stream_id": stream_id, "error": error.message})
            raise error from exc
        except BaseException:
            await client.aclose()
            raise

        if not response.is_success:
            status = response.status_code
            await response.aclose()
            await client.aclose()
            message = f"HTTP error: {status}"
            self._log.warning("Stream %s rejected: %s", stream_id, message)
            self._emit(stream_id, EventType.ERROR, error=message)
            self._record({
                "type": "stream_start", "stream_id": stream_id,
                "status": status, "error": message,
            })
            raise HTTPStatusError(message, status)

        if self.is_active(stream_id):
            self._log.warning(
                "Stream id %s is already in flight; the older stream can no longer be cancelled",
                stream_id,
            )

        stream = _ActiveStream(stream_id=stream_id, client=client, response=response)
        stream.task = asyncio.create_task(self._pump(stream), name=f"stream:{stream_id}")
        stream.task.add_done_callback(lambda _t, s=stream: self._on_pump_done(s))
        self._streams[stream_id] = stream
        self._live.append(stream)

        self._log.info(
            "Stream %s started: %s %s -> %d", stream_id, method.value, spec.url,
            response.status_code,
        )
        self._record({
            "type": "stream_start", "stream_id": stream_id,
            "status": response.status_code,
        })
        return f"Stream {stream_id} started"

    async def _pump(self, stream: _ActiveStream) -> None:
        stream_id = stream.stream_id
        try:
            async for chunk in stream.response.aiter_bytes():
                try:
                    text = chunk.decode("utf-8")
                except UnicodeDecodeError:
                    stream.skipped += 1
                    self._log.warning(
                        "Stream %s: skipping %d-byte chunk that is not valid UTF-8",
                        stream_id, len(chunk),
                    )
                    continue
                stream.chunks += 1
                self._emit(stream_id, EventType.DATA, data=text)
        except asyncio.CancelledError:
            self._finish(stream, "cancelled", CANCELLED_MESSAGE)
            raise
        except (httpx.HTTPError, httpx.StreamError) as exc:
            self._log.warning("Stream %s read error: %s", stream_id, exc)
            self._finish(stream, "error", f"Stream read error: {exc}")
        except Exception as exc:
            self._log.exception("Stream %s pump failed", stream_id)
            self._finish(stream, "error", f"Stream failed: {exc}")
        else:
            self._finish(stream, "end")
        finally:
            await self._close(stream)

    def _on_pump_done(self, stream: _ActiveStream) -> None:
        if stream in self._live:
            self._live.remove(stream)
        if self._streams.get(stream.stream_id) is stream:
            del self._streams[stream.stream_id]
        if not stream.finished:
            # Cancelled before the pump ran its first step.
            self._finish(stream, "cancelled", CANCELLED_MESSAGE)
        if not stream.closed:
            asyncio.get_running_loop().create_task(self._close(stream))
