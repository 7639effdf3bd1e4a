from .client import TimeoutMode, build_client, build_proxy, resolve_proxy_url
from .events import STREAM_EVENT_NAME, EventEmitter, Subscription
from .metrics import RelayMetrics
from .oneshot import execute, probe_proxy
from .service import RelayService
from .streaming import StreamRelay

__all__ = [
    "TimeoutMode",
    "build_client",
    "build_proxy",
    "resolve_proxy_url",
    "STREAM_EVENT_NAME",
    "EventEmitter",
    "Subscription",
    "RelayMetrics",
    "execute",
    "probe_proxy",
    "RelayService",
    "StreamRelay",
]
