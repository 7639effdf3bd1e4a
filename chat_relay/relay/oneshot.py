"""One-shot relay: send a single request and buffer the whole response."""

from __future__ import annotations

import asyncio
import logging
import time

import httpx

from ..types import (
    BodyReadError,
    HttpMethod,
    HTTPStatusError,
    HttpResult,
    ProxyConfig,
    RequestSpec,
    TransportError,
)
from .client import DEFAULT_REQUEST_TIMEOUT, ClientFactory, TimeoutMode, build_client

logger = logging.getLogger(__name__)


def build_request(
    client: httpx.AsyncClient,
    method: HttpMethod,
    url: str,
    headers: dict[str, str] | None,
    body: str | None,
) -> httpx.Request:
    """Build the outbound request; an unusable URL is a transport failure."""
    try:
        return client.build_request(
            method.value,
            url,
            headers=headers or None,
            content=body.encode("utf-8") if body is not None else None,
        )
    except httpx.InvalidURL as exc:
        raise TransportError(f"Invalid URL {url}: {exc}") from exc


def transport_error(exc: Exception) -> TransportError:
    """Translate an httpx send failure into a TransportError."""
    if isinstance(exc, httpx.TimeoutException):
        return TransportError(f"Request timed out: {exc or type(exc).__name__}", timeout=True)
    return TransportError(f"Request failed: {exc or type(exc).__name__}")


def copy_headers(response: httpx.Response) -> dict[str, str]:
    """Response headers as a flat mapping.

    Names are lower-cased; a repeated name keeps its last value.  Values that
    are not visible ASCII text are dropped.
    """
    headers: dict[str, str] = {}
    for raw_name, raw_value in response.headers.raw:
        try:
            value = raw_value.decode("ascii")
        except UnicodeDecodeError:
            continue
        if any(not (ch == "\t" or " " <= ch <= "~") for ch in value):
            continue
        headers[raw_name.decode("latin-1").lower()] = value
    return headers


async def _exchange(
    client: httpx.AsyncClient,
    spec: RequestSpec,
    method: HttpMethod,
    log: logging.Logger,
) -> HttpResult:
    request = build_request(client, method, spec.url, spec.headers, spec.body)
    try:
        response = await client.send(request, stream=True)
    except httpx.HTTPError as exc:
        raise transport_error(exc) from exc

    try:
        status = response.status_code
        headers = copy_headers(response)
        try:
            await response.aread()
        except (httpx.HTTPError, httpx.StreamError) as exc:
            raise BodyReadError(f"Failed to read response body: {exc}") from exc
        body = response.text
    finally:
        await response.aclose()

    return HttpResult(
        status=status,
        headers=headers,
        body=body,
        success=200 <= status < 300,
    )


async def execute(
    spec: RequestSpec,
    *,
    client_factory: ClientFactory = build_client,
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    log: logging.Logger | None = None,
) -> HttpResult:
    """Relay *spec* once and return the buffered result.

    A non-2xx status is still a result (``success=False``); only transport and
    body-read failures raise.  No retries.
    """
    log = log or logger
    method = HttpMethod.parse(spec.method)
    client = client_factory(spec.proxy, TimeoutMode.BOUNDED)

    t0 = time.monotonic()
    async with client:
        try:
            result = await asyncio.wait_for(
                _exchange(client, spec, method, log), timeout=request_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TransportError(
                f"Request timed out after {request_timeout:g}s", timeout=True,
            ) from exc

    log.debug(
        "%s %s -> %d in %dms",
        method.value, spec.url, result.status, int((time.monotonic() - t0) * 1000),
    )
    return result


async def probe_proxy(
    proxy: ProxyConfig | None,
    *,
    probe_url: str,
    client_factory: ClientFactory = build_client,
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    log: logging.Logger | None = None,
) -> str:
    """GET *probe_url* through *proxy*; a 2xx answer means the proxy works."""
    log = log or logger
    result = await execute(
        RequestSpec(url=probe_url, method=HttpMethod.GET, proxy=proxy),
        client_factory=client_factory,
        request_timeout=request_timeout,
        log=log,
    )
    if not result.success:
        raise HTTPStatusError(
            f"Proxy test failed with status: {result.status}", result.status,
        )
    log.info("Proxy probe via %s succeeded (status %d)", probe_url, result.status)
    return f"Proxy connection succeeded (status {result.status})"
