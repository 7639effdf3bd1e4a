"""chat-relay: proxy-aware HTTP relay backend for a desktop chat client."""

from .config import load_config
from .relay.service import RelayService
from .types import (
    AppConfig,
    HttpMethod,
    HttpResult,
    ProxyConfig,
    ProxyType,
    RelayError,
    RequestSpec,
    StreamEvent,
    StreamRequestSpec,
)

__version__ = "0.1.0"

__all__ = [
    "RelayService",
    "load_config",
    "AppConfig",
    "HttpMethod",
    "HttpResult",
    "ProxyConfig",
    "ProxyType",
    "RelayError",
    "RequestSpec",
    "StreamEvent",
    "StreamRequestSpec",
]
