"""HTTP command surface for the desktop UI.

The UI cannot open sockets itself, so every relay operation is exposed as a
``POST /commands/<name>`` route and stream events are pushed over a single
SSE channel at ``/events`` (event name ``stream-event``).

Usage:
    chat-relay -c chat-relay.yaml serve --port 5858
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool

from .config import load_config
from .relay.client import resolve_proxy_url
from .relay.events import STREAM_EVENT_NAME
from .relay.service import RelayService
from .storage.base import SettingsStore
from .storage.sqlite import SQLiteSettingsStore
from .types import (
    AppConfig,
    ProxySettings,
    RelayError,
    ValidationError,
)

logger = logging.getLogger(__name__)
ui_logger = logging.getLogger("chat_relay.ui")

_UI_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_KEEPALIVE_SECONDS = 15.0


def _error_response(exc: RelayError) -> JSONResponse:
    status_code = 400 if isinstance(exc, ValidationError) else 502
    return JSONResponse(content=exc.to_dict(), status_code=status_code)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(
        content={"error": message, "kind": "invalid_request"}, status_code=400,
    )


async def _json_object(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValidationError(f"Malformed JSON body: {exc}") from exc
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    # Accept the desktop invoke envelope {"params": {...}} as well as a bare object.
    params = body.get("params")
    return params if isinstance(params, dict) else body


def _format_sse(payload: dict) -> str:
    return f"event: {STREAM_EVENT_NAME}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


def create_app(
    config: AppConfig | None = None,
    *,
    config_path: str | Path | None = None,
    service: RelayService | None = None,
    store: SettingsStore | None = None,
) -> FastAPI:
    """Create the FastAPI app wired to a RelayService and settings store."""
    if config is None:
        config = service.config if service is not None else load_config(config_path)
    if service is None:
        service = RelayService(config)
    owns_store = store is None
    if store is None:
        store = SQLiteSettingsStore(config.storage.sqlite_path)

    shutdown_event = asyncio.Event()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        logger.info("chat-relay backend ready (storage=%s)", config.storage.sqlite_path)
        yield
        shutdown_event.set()
        await service.shutdown()
        if owns_store:
            store.close()

    app = FastAPI(title="chat-relay", lifespan=lifespan)
    app.state.service = service
    app.state.store = store

    # --------------- Relay commands ---------------

    @app.post("/commands/send_http_request")
    async def send_http_request(request: Request):
        try:
            params = await _json_object(request)
            result = await service.send_http_request(params)
        except RelayError as exc:
            return _error_response(exc)
        return JSONResponse(content=result.to_dict())

    @app.post("/commands/send_stream_request")
    async def send_stream_request(request: Request):
        try:
            params = await _json_object(request)
            ack = await service.send_stream_request(params)
        except RelayError as exc:
            return _error_response(exc)
        return JSONResponse(content={"result": ack})

    @app.post("/commands/test_proxy_connection")
    async def test_proxy_connection(request: Request):
        try:
            body = await _json_object(request)
            proxy_raw = body.get("proxy_config") or body.get("proxyConfig") or body
            message = await service.test_proxy_connection(proxy_raw)
        except RelayError as exc:
            return _error_response(exc)
        return JSONResponse(content={"result": message})

    @app.post("/commands/cancel_stream")
    async def cancel_stream(request: Request):
        try:
            body = await _json_object(request)
        except RelayError as exc:
            return _error_response(exc)
        stream_id = body.get("stream_id")
        if not stream_id:
            return _bad_request("Missing required field: stream_id")
        return JSONResponse(content={"cancelled": service.cancel_stream(str(stream_id))})

    @app.post("/commands/log")
    async def log_command(request: Request):
        try:
            body = await _json_object(request)
        except RelayError as exc:
            return _error_response(exc)
        level = _UI_LOG_LEVELS.get(str(body.get("level", "info")).lower())
        if level is None:
            return _bad_request(f"Unknown log level: {body.get('level')}")
        ui_logger.log(level, "%s", body.get("message", ""))
        return JSONResponse(content={"ok": True})

    # --------------- Events ---------------

    @app.get("/events")
    async def events(request: Request):
        async def event_stream():
            with service.emitter.subscribe() as sub:
                while True:
                    if await request.is_disconnected():
                        break
                    if shutdown_event.is_set():
                        break
                    try:
                        event = await asyncio.wait_for(sub.get(), timeout=_KEEPALIVE_SECONDS)
                    except asyncio.TimeoutError:
                        yield ": keep-alive\n\n"
                        continue
                    yield _format_sse(event.to_dict())

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={"cache-control": "no-cache", "x-accel-buffering": "no"},
        )

    @app.get("/status")
    async def status():
        return JSONResponse(content=service.status())

    # --------------- Settings ---------------

    # Store calls block: sync routes run in the threadpool, async ones offload writes.

    @app.get("/proxy-settings")
    def get_proxy_settings():
        settings = store.get_proxy_settings()
        return JSONResponse(content=settings.to_dict() if settings else None)

    @app.put("/proxy-settings")
    async def put_proxy_settings(request: Request):
        try:
            body = await _json_object(request)
            settings = ProxySettings.from_dict(body)
            if settings.enabled:
                # Reject configs the relay could never use.
                resolve_proxy_url(settings.to_proxy_config())
        except RelayError as exc:
            return _error_response(exc)
        await run_in_threadpool(store.save_proxy_settings, settings)
        return JSONResponse(content=settings.to_dict())

    @app.get("/settings")
    def get_all_settings():
        return JSONResponse(content=store.get_all_settings())

    @app.get("/settings/{key}")
    def get_setting(key: str):
        value = store.get_setting(key)
        if value is None:
            return JSONResponse(content={"error": f"Setting not found: {key}"}, status_code=404)
        return JSONResponse(content={"key": key, "value": value})

    @app.put("/settings/{key}")
    async def put_setting(key: str, request: Request):
        try:
            body = await _json_object(request)
        except RelayError as exc:
            return _error_response(exc)
        if "value" not in body:
            return _bad_request("Missing required field: value")
        value = body["value"]
        if not isinstance(value, str):
            value = json.dumps(value)
        await run_in_threadpool(store.save_setting, key, value)
        return JSONResponse(content={"key": key, "value": value})

    @app.delete("/settings/{key}")
    def delete_setting(key: str):
        return JSONResponse(content={"deleted": store.delete_setting(key)})

    return app
