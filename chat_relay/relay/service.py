"""Command layer: the relay operations the UI invokes."""

from __future__ import annotations

import functools
import logging
from typing import Any

from ..types import (
    AppConfig,
    HttpResult,
    ProxyConfig,
    RelayError,
    RequestSpec,
    StreamRequestSpec,
)
from .client import USER_AGENT, ClientFactory, build_client
from .events import EventEmitter
from .metrics import RelayMetrics
from .oneshot import execute, probe_proxy
from .streaming import StreamRelay

logger = logging.getLogger(__name__)


class RelayService:
    """Owns the emitter, stream registry and metrics for one backend process."""

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        emitter: EventEmitter | None = None,
        client_factory: ClientFactory | None = None,
        metrics: RelayMetrics | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.emitter = emitter or EventEmitter()
        self.metrics = metrics or RelayMetrics()
        self._log = log or logger
        relay_cfg = self.config.relay
        self.client_factory: ClientFactory = client_factory or functools.partial(
            build_client,
            request_timeout=relay_cfg.request_timeout,
            user_agent=relay_cfg.user_agent or USER_AGENT,
            follow_redirects=relay_cfg.follow_redirects,
            log=self._log,
        )
        self.streams = StreamRelay(
            self.emitter,
            client_factory=self.client_factory,
            metrics=self.metrics,
            log=self._log,
        )

    async def send_http_request(self, params: RequestSpec | dict[str, Any]) -> HttpResult:
        spec = params if isinstance(params, RequestSpec) else RequestSpec.from_dict(params)
        try:
            result = await execute(
                spec,
                client_factory=self.client_factory,
                request_timeout=self.config.relay.request_timeout,
                log=self._log,
            )
        except RelayError as exc:
            self.metrics.record({"type": "request", "url": spec.url, "error": exc.message})
            raise
        self.metrics.record({
            "type": "request", "url": spec.url, "status": result.status,
            "success": result.success,
        })
        return result

    async def send_stream_request(self, params: StreamRequestSpec | dict[str, Any]) -> str:
        spec = (
            params if isinstance(params, StreamRequestSpec)
            else StreamRequestSpec.from_dict(params)
        )
        return await self.streams.start_stream(spec)

    async def test_proxy_connection(self, proxy: ProxyConfig | dict[str, Any]) -> str:
        config = proxy if isinstance(proxy, ProxyConfig) else ProxyConfig.from_dict(proxy)
        try:
            message = await probe_proxy(
                config,
                probe_url=self.config.relay.probe_url,
                client_factory=self.client_factory,
                request_timeout=self.config.relay.request_timeout,
                log=self._log,
            )
        except RelayError as exc:
            self.metrics.record({"type": "proxy_test", "host": config.host, "error": exc.message})
            raise
        self.metrics.record({"type": "proxy_test", "host": config.host})
        return message

    def cancel_stream(self, stream_id: str) -> bool:
        return self.streams.cancel(stream_id)

    def status(self) -> dict:
        snap = self.metrics.snapshot()
        snap["active_streams"] = self.streams.active_streams()
        snap["subscribers"] = self.emitter.subscriber_count
        return snap

    async def shutdown(self) -> None:
        await self.streams.shutdown()
