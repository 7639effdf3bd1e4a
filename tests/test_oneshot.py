"""Tests for the one-shot relay and the proxy probe."""

import asyncio

import httpx
import pytest

from conftest import MockUpstream, chunked
from chat_relay.relay.client import TimeoutMode
from chat_relay.relay.oneshot import copy_headers, execute, probe_proxy
from chat_relay.types import (
    BodyReadError,
    HTTPStatusError,
    ProxyConfig,
    RequestSpec,
    TransportError,
    UnsupportedMethodError,
)


@pytest.mark.asyncio
async def test_get_returns_status_headers_body():
    upstream = MockUpstream(lambda r: httpx.Response(
        200, headers={"X-Custom": "yes"}, text="hello world",
    ))
    result = await execute(
        RequestSpec(url="http://upstream.test/hello"), client_factory=upstream.factory,
    )
    assert result.status == 200
    assert result.success is True
    assert result.body == "hello world"
    assert result.headers["x-custom"] == "yes"
    assert result.error is None


@pytest.mark.asyncio
async def test_non_2xx_is_a_result_not_an_error():
    upstream = MockUpstream(lambda r: httpx.Response(404, text="not found"))
    result = await execute(
        RequestSpec(url="http://upstream.test/missing"), client_factory=upstream.factory,
    )
    assert result.status == 404
    assert result.success is False
    assert result.body == "not found"


@pytest.mark.asyncio
async def test_request_forwarded_as_given():
    upstream = MockUpstream()
    spec = RequestSpec(
        url="http://upstream.test/chat",
        method="post",
        headers={"Authorization": "Bearer k", "Content-Type": "application/json"},
        body='{"prompt": "hi"}',
    )
    await execute(spec, client_factory=upstream.factory)

    sent = upstream.requests[0]
    assert sent.method == "POST"
    assert str(sent.url) == "http://upstream.test/chat"
    assert sent.headers["authorization"] == "Bearer k"
    assert sent.content == b'{"prompt": "hi"}'


@pytest.mark.asyncio
async def test_one_shot_uses_bounded_client():
    upstream = MockUpstream()
    proxy = ProxyConfig(enabled=True, proxy_type="http", host="p", port=1)
    await execute(RequestSpec(url="http://upstream.test/", proxy=proxy),
                  client_factory=upstream.factory)
    assert upstream.factory_calls == [(proxy, TimeoutMode.BOUNDED)]


@pytest.mark.asyncio
async def test_unsupported_method_makes_no_network_call():
    upstream = MockUpstream()
    with pytest.raises(UnsupportedMethodError) as exc_info:
        await execute(RequestSpec(url="http://upstream.test/", method="PATCH"),
                      client_factory=upstream.factory)
    assert "Unsupported HTTP method: PATCH" in str(exc_info.value)
    assert upstream.factory_calls == []
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_headers_that_are_not_visible_ascii_are_dropped():
    upstream = MockUpstream(lambda r: httpx.Response(200, headers=[
        (b"X-Plain", b"ok value"),
        (b"X-Binary", b"caf\xc3\xa9"),
        (b"X-Control", b"a\x01b"),
    ]))
    result = await execute(RequestSpec(url="http://upstream.test/"),
                           client_factory=upstream.factory)
    assert result.headers["x-plain"] == "ok value"
    assert "x-binary" not in result.headers
    assert "x-control" not in result.headers


def test_copy_headers_last_value_wins():
    response = httpx.Response(200, headers=[(b"Set-Cookie", b"a=1"), (b"set-cookie", b"b=2")])
    assert copy_headers(response)["set-cookie"] == "b=2"


@pytest.mark.asyncio
async def test_connect_failure_is_transport_error():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError) as exc_info:
        await execute(RequestSpec(url="http://upstream.test/"),
                      client_factory=MockUpstream(refuse).factory)
    assert "connection refused" in str(exc_info.value)
    assert exc_info.value.timeout is False


@pytest.mark.asyncio
async def test_client_timeout_is_transport_error():
    def slow(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(TransportError) as exc_info:
        await execute(RequestSpec(url="http://upstream.test/"),
                      client_factory=MockUpstream(slow).factory)
    assert exc_info.value.timeout is True


@pytest.mark.asyncio
async def test_total_deadline_applies():
    async def hang(request):
        await asyncio.sleep(5)
        return httpx.Response(200)

    with pytest.raises(TransportError) as exc_info:
        await execute(RequestSpec(url="http://upstream.test/"),
                      client_factory=MockUpstream(hang).factory,
                      request_timeout=0.05)
    assert exc_info.value.timeout is True
    assert "timed out after 0.05s" in str(exc_info.value)


@pytest.mark.asyncio
async def test_body_read_failure():
    async def broken_body():
        yield b"partial"
        raise httpx.ReadError("connection reset")

    upstream = MockUpstream(lambda r: httpx.Response(200, content=broken_body()))
    with pytest.raises(BodyReadError) as exc_info:
        await execute(RequestSpec(url="http://upstream.test/"),
                      client_factory=upstream.factory)
    assert "connection reset" in str(exc_info.value)


@pytest.mark.asyncio
async def test_chunked_body_is_buffered():
    upstream = MockUpstream(lambda r: httpx.Response(200, content=chunked(b"ab", b"cd", b"ef")))
    result = await execute(RequestSpec(url="http://upstream.test/"),
                           client_factory=upstream.factory)
    assert result.body == "abcdef"


@pytest.mark.asyncio
async def test_invalid_url_is_transport_error():
    with pytest.raises(TransportError):
        await execute(RequestSpec(url="http://upstream.test:abc/"), client_factory=MockUpstream().factory)


class TestProbeProxy:
    @pytest.mark.asyncio
    async def test_success(self):
        upstream = MockUpstream(lambda r: httpx.Response(200, json={"origin": "10.0.0.1"}))
        proxy = ProxyConfig(enabled=True, proxy_type="socks5", host="10.0.0.1", port=1080)
        message = await probe_proxy(
            proxy, probe_url="https://probe.test/ip", client_factory=upstream.factory,
        )
        assert "succeeded" in message
        assert str(upstream.requests[0].url) == "https://probe.test/ip"
        assert upstream.requests[0].method == "GET"
        assert upstream.factory_calls[0][0] is proxy

    @pytest.mark.asyncio
    async def test_non_2xx_fails(self):
        upstream = MockUpstream(lambda r: httpx.Response(407))
        with pytest.raises(HTTPStatusError) as exc_info:
            await probe_proxy(
                None, probe_url="https://probe.test/ip", client_factory=upstream.factory,
            )
        assert exc_info.value.status == 407
        assert "Proxy test failed with status: 407" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_unreachable_proxy(self):
        def refuse(request):
            raise httpx.ProxyError("proxy unreachable", request=request)

        with pytest.raises(TransportError):
            await probe_proxy(
                None, probe_url="https://probe.test/ip",
                client_factory=MockUpstream(refuse).factory,
            )
