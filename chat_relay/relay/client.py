"""Proxy resolution and outbound HTTP client construction.

One factory builds every client the relay uses.  The only difference between
the one-shot and the streaming relay is the timeout policy:

* ``TimeoutMode.BOUNDED``: fixed per-phase timeout; the one-shot relay also
  wraps the whole exchange in a total deadline of the same length.
* ``TimeoutMode.UNBOUNDED``: no timeout at all, so long-lived response bodies
  are never cut off by the client.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Callable

import httpx

from ..types import ProxyConfig, ProxyConfigError, ProxyType

logger = logging.getLogger(__name__)

USER_AGENT = "chat-relay/0.1.0"
DEFAULT_REQUEST_TIMEOUT = 30.0

_SCHEME_PREFIXES = tuple(f"{t.value}://" for t in ProxyType)


class TimeoutMode(enum.Enum):
    BOUNDED = "bounded"
    UNBOUNDED = "unbounded"


# (proxy, mode) -> client.  Relays take one of these so tests can swap in a
# client backed by httpx.MockTransport.
ClientFactory = Callable[[ProxyConfig | None, TimeoutMode], httpx.AsyncClient]


def strip_scheme(host: str) -> str:
    """Remove a leading ``http://``, ``https://`` or ``socks5://`` from *host*."""
    host = host.strip()
    lowered = host.lower()
    for prefix in _SCHEME_PREFIXES:
        if lowered.startswith(prefix):
            return host[len(prefix):]
    return host


def resolve_proxy_url(proxy: ProxyConfig) -> str:
    """Compose ``{proxy_type}://{host}:{port}`` for an enabled proxy config.

    Raises UnsupportedProxyTypeError for an unknown type and ProxyConfigError
    when the host/port do not form a valid URL.
    """
    proxy_type = ProxyType.parse(proxy.proxy_type)
    host = strip_scheme(proxy.host)
    if not host:
        raise ProxyConfigError("Proxy host is empty")
    if not 0 <= int(proxy.port) <= 65535:
        raise ProxyConfigError(f"Proxy port out of range: {proxy.port}")

    url = f"{proxy_type.value}://{host}:{proxy.port}"
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as exc:
        raise ProxyConfigError(f"Invalid proxy URL {url}: {exc}") from exc
    if not parsed.host or parsed.path not in ("", "/") or parsed.query:
        raise ProxyConfigError(f"Invalid proxy URL: {url}")
    return url


def build_proxy(
    proxy: ProxyConfig | None,
    log: logging.Logger | None = None,
) -> httpx.Proxy | None:
    """Resolve *proxy* into an ``httpx.Proxy``, or None for a direct connection."""
    log = log or logger
    if proxy is None or not proxy.enabled:
        log.debug("No proxy configured, connecting directly")
        return None

    url = resolve_proxy_url(proxy)
    log.info("Using proxy: %s", url)

    auth = None
    if proxy.requires_auth:
        # Credentials are attached only when both are present; a half-filled
        # pair silently falls back to an unauthenticated proxy.
        if proxy.username is not None and proxy.password is not None:
            auth = (proxy.username, proxy.password)
            log.info("Proxy authentication configured for user %s", proxy.username)
        else:
            log.info("Proxy requires auth but credentials are incomplete, skipping auth")

    try:
        return httpx.Proxy(url, auth=auth)
    except ValueError as exc:
        raise ProxyConfigError(f"Invalid proxy URL {url}: {exc}") from exc


def client_kwargs(
    proxy: ProxyConfig | None,
    mode: TimeoutMode,
    *,
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    user_agent: str = USER_AGENT,
    follow_redirects: bool = True,
    log: logging.Logger | None = None,
) -> dict[str, Any]:
    """Keyword arguments for ``httpx.AsyncClient`` (no I/O performed)."""
    if mode is TimeoutMode.BOUNDED:
        timeout = httpx.Timeout(request_timeout)
    else:
        timeout = httpx.Timeout(None)

    kwargs: dict[str, Any] = {
        "timeout": timeout,
        "headers": {"User-Agent": user_agent or USER_AGENT},
        "follow_redirects": follow_redirects,
        # Never pick up HTTP(S)_PROXY from the environment: no proxy config
        # means a direct connection.
        "trust_env": False,
    }
    resolved = build_proxy(proxy, log=log)
    if resolved is not None:
        kwargs["proxy"] = resolved
    return kwargs


def build_client(
    proxy: ProxyConfig | None,
    mode: TimeoutMode = TimeoutMode.BOUNDED,
    *,
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    user_agent: str = USER_AGENT,
    follow_redirects: bool = True,
    log: logging.Logger | None = None,
) -> httpx.AsyncClient:
    """Build a fresh client bound to *proxy* with the given timeout policy."""
    kwargs = client_kwargs(
        proxy,
        mode,
        request_timeout=request_timeout,
        user_agent=user_agent,
        follow_redirects=follow_redirects,
        log=log,
    )
    try:
        return httpx.AsyncClient(**kwargs)
    except ImportError as exc:
        # SOCKS support needs the optional socksio package.
        raise ProxyConfigError(f"Proxy support unavailable: {exc}") from exc
