"""All dataclasses, enums, and the error hierarchy for chat-relay."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class RelayErrorKind(str, Enum):
    UNSUPPORTED_METHOD = "unsupported_method"
    UNSUPPORTED_PROXY_TYPE = "unsupported_proxy_type"
    INVALID_PROXY = "invalid_proxy"
    INVALID_REQUEST = "invalid_request"
    TRANSPORT = "transport"
    BODY_READ = "body_read"
    HTTP_STATUS = "http_status"


class RelayError(Exception):
    """Base class for every failure the relay reports to its caller."""

    kind: RelayErrorKind = RelayErrorKind.TRANSPORT

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind.value}


class ValidationError(RelayError):
    """Rejected before any network I/O."""

    kind = RelayErrorKind.INVALID_REQUEST


class UnsupportedMethodError(ValidationError):
    kind = RelayErrorKind.UNSUPPORTED_METHOD

    def __init__(self, method: str) -> None:
        super().__init__(f"Unsupported HTTP method: {method}")
        self.method = method


class UnsupportedProxyTypeError(ValidationError):
    kind = RelayErrorKind.UNSUPPORTED_PROXY_TYPE

    def __init__(self, proxy_type: str) -> None:
        super().__init__(f"Unsupported proxy type: {proxy_type}")
        self.proxy_type = proxy_type


class ProxyConfigError(ValidationError):
    kind = RelayErrorKind.INVALID_PROXY


class TransportError(RelayError):
    """DNS, connect, TLS or timeout failure before a response was obtained."""

    kind = RelayErrorKind.TRANSPORT

    def __init__(self, message: str, timeout: bool = False) -> None:
        super().__init__(message)
        self.timeout = timeout


class BodyReadError(RelayError):
    kind = RelayErrorKind.BODY_READ


class HTTPStatusError(RelayError):
    kind = RelayErrorKind.HTTP_STATUS

    def __init__(self, message: str, status: int) -> None:
        super().__init__(message)
        self.status = status


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"

    @classmethod
    def parse(cls, value: HttpMethod | str) -> HttpMethod:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise UnsupportedMethodError(str(value)) from None


class ProxyType(str, Enum):
    HTTP = "http"
    HTTPS = "https"
    SOCKS5 = "socks5"

    @classmethod
    def parse(cls, value: ProxyType | str) -> ProxyType:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnsupportedProxyTypeError(str(value)) from None


class EventType(str, Enum):
    DATA = "data"
    END = "end"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Relay requests and results
# ---------------------------------------------------------------------------

def _require(raw: dict[str, Any], key: str) -> Any:
    if key not in raw or raw[key] is None:
        raise ValidationError(f"Missing required field: {key}")
    return raw[key]


def _require_object(raw: Any, what: str) -> None:
    if not isinstance(raw, dict):
        raise ProxyConfigError(f"{what} must be an object, got {type(raw).__name__}")


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


@dataclass
class ProxyConfig:
    enabled: bool = False
    proxy_type: ProxyType | str = ProxyType.HTTP
    host: str = ""
    port: int = 0
    requires_auth: bool = False
    username: str | None = None
    password: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ProxyConfig:
        # proxy_type stays a string here; the client factory rejects unknown
        # types so a disabled config with a stale type still parses.
        _require_object(raw, "proxy config")
        try:
            port = int(raw.get("port", 0) or 0)
        except (TypeError, ValueError):
            raise ProxyConfigError(f"Invalid proxy port: {raw.get('port')!r}") from None
        return cls(
            enabled=bool(raw.get("enabled", False)),
            proxy_type=raw.get("proxy_type", ProxyType.HTTP.value),
            host=str(raw.get("host", "") or ""),
            port=port,
            requires_auth=bool(raw.get("requires_auth", False)),
            username=_optional_str(raw.get("username")),
            password=_optional_str(raw.get("password")),
        )

    def to_dict(self) -> dict:
        out = {
            "enabled": self.enabled,
            "proxy_type": getattr(self.proxy_type, "value", self.proxy_type),
            "host": self.host,
            "port": self.port,
            "requires_auth": self.requires_auth,
        }
        if self.username is not None:
            out["username"] = self.username
        if self.password is not None:
            out["password"] = self.password
        return out


@dataclass
class RequestSpec:
    url: str
    method: HttpMethod | str = HttpMethod.GET
    headers: dict[str, str] | None = None
    body: str | None = None
    proxy: ProxyConfig | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> RequestSpec:
        return cls(**_request_fields(raw))


@dataclass
class StreamRequestSpec(RequestSpec):
    stream_id: str = ""

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> StreamRequestSpec:
        stream_id = str(_require(raw, "stream_id"))
        if not stream_id:
            raise ValidationError("stream_id must not be empty")
        return cls(stream_id=stream_id, **_request_fields(raw))


def _request_fields(raw: dict[str, Any]) -> dict[str, Any]:
    headers = raw.get("headers")
    if headers is not None and not isinstance(headers, dict):
        raise ValidationError("headers must be an object of string values")
    # Both key spellings are accepted: the desktop UI sends "proxy_config".
    proxy_raw = raw.get("proxy_config", raw.get("proxy"))
    body = raw.get("body")
    if body is not None and not isinstance(body, str):
        raise ValidationError("body must be a string")
    return {
        "url": str(_require(raw, "url")),
        "method": HttpMethod.parse(raw.get("method", "GET")),
        "headers": {str(k): str(v) for k, v in headers.items()} if headers else None,
        "body": body,
        "proxy": ProxyConfig.from_dict(proxy_raw) if proxy_raw is not None else None,
    }


@dataclass
class HttpResult:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""
    success: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        out = {
            "status": self.status,
            "headers": dict(self.headers),
            "body": self.body,
            "success": self.success,
        }
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass
class StreamEvent:
    stream_id: str
    event_type: EventType
    data: str | None = None
    error: str | None = None

    @property
    def terminal(self) -> bool:
        return self.event_type in (EventType.END, EventType.ERROR)

    def to_dict(self) -> dict:
        out: dict[str, Any] = {
            "stream_id": self.stream_id,
            "event_type": self.event_type.value,
        }
        if self.data is not None:
            out["data"] = self.data
        if self.error is not None:
            out["error"] = self.error
        return out


# ---------------------------------------------------------------------------
# Persisted settings
# ---------------------------------------------------------------------------

@dataclass
class ProxySettings:
    """Saved proxy configuration (single row in the settings store)."""
    enabled: bool = False
    proxy_type: str = ProxyType.HTTP.value
    host: str = ""
    port: int = 0
    requires_auth: bool = False
    username: str = ""
    password: str = ""
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_proxy_config(self) -> ProxyConfig | None:
        """Relay form of these settings; None when the proxy is disabled."""
        if not self.enabled:
            return None
        return ProxyConfig(
            enabled=True,
            proxy_type=self.proxy_type,
            host=self.host,
            port=self.port,
            requires_auth=self.requires_auth,
            username=self.username if self.requires_auth else None,
            password=self.password if self.requires_auth else None,
        )

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ProxySettings:
        _require_object(raw, "proxy settings")
        try:
            port = int(raw.get("port", 0) or 0)
        except (TypeError, ValueError):
            raise ProxyConfigError(f"Invalid proxy port: {raw.get('port')!r}") from None
        return cls(
            enabled=bool(raw.get("enabled", False)),
            proxy_type=str(raw.get("proxy_type", ProxyType.HTTP.value)),
            host=str(raw.get("host", "") or ""),
            port=port,
            requires_auth=bool(raw.get("requires_auth", False)),
            username=str(raw.get("username", "") or ""),
            password=str(raw.get("password", "") or ""),
        )

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "proxy_type": self.proxy_type,
            "host": self.host,
            "port": self.port,
            "requires_auth": self.requires_auth,
            "username": self.username,
            "password": self.password,
            "updated_at": self.updated_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class RelayConfig:
    request_timeout: float = 30.0  # total deadline for bounded (one-shot) calls
    user_agent: str = ""  # empty = chat-relay/<version>
    probe_url: str = "https://httpbin.org/ip"
    follow_redirects: bool = True


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 5858


@dataclass
class LoggingConfig:
    level: str = "info"


@dataclass
class StorageConfig:
    sqlite_path: str = ".chat-relay/database.sqlite"


@dataclass
class AppConfig:
    version: str = "0.1"
    relay: RelayConfig = field(default_factory=RelayConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
