"""CLI: chat-relay serve, request, stream, test-proxy, proxy, config validate."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys

from ..config import load_config, validate_config
from ..relay.client import resolve_proxy_url
from ..relay.service import RelayService
from ..storage.sqlite import SQLiteSettingsStore
from ..types import (
    EventType,
    ProxyConfig,
    ProxySettings,
    RelayError,
    RequestSpec,
    StreamEvent,
    StreamRequestSpec,
)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_ENV_VAR = "CHAT_RELAY_LOG"


def configure_logging(level: str = "info") -> None:
    """Install one stream handler; CHAT_RELAY_LOG overrides *level*."""
    name = os.environ.get(LOG_ENV_VAR, level).strip().upper()
    if name == "WARN":
        name = "WARNING"
    numeric = logging.getLevelName(name)
    if not isinstance(numeric, int):
        numeric = logging.INFO
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(numeric)
    # httpx logs every request at INFO; the relay already does.
    logging.getLogger("httpx").setLevel(max(numeric, logging.WARNING))
    logging.getLogger("httpcore").setLevel(max(numeric, logging.WARNING))


def _get_store(config):
    return SQLiteSettingsStore(db_path=config.storage.sqlite_path)


def _parse_headers(values: list[str] | None) -> dict[str, str] | None:
    if not values:
        return None
    headers: dict[str, str] = {}
    for item in values:
        if ":" not in item:
            raise SystemExit(f"Invalid header (expected 'Name: value'): {item}")
        name, value = item.split(":", 1)
        headers[name.strip()] = value.strip()
    return headers


def _proxy_from_args(args, config) -> ProxyConfig | None:
    if getattr(args, "saved_proxy", False):
        store = _get_store(config)
        try:
            saved = store.get_proxy_settings()
        finally:
            store.close()
        if saved is None:
            print("No saved proxy settings.", file=sys.stderr)
            return None
        return saved.to_proxy_config()

    if not args.proxy_host:
        return None
    return ProxyConfig(
        enabled=True,
        proxy_type=args.proxy_type,
        host=args.proxy_host,
        port=args.proxy_port,
        requires_auth=bool(args.proxy_user or args.proxy_pass),
        username=args.proxy_user,
        password=args.proxy_pass,
    )


def _add_proxy_args(parser: argparse.ArgumentParser, saved: bool = True) -> None:
    parser.add_argument("--proxy-type", default="http", help="http, https or socks5")
    parser.add_argument("--proxy-host", help="Proxy host (scheme prefix allowed)")
    parser.add_argument("--proxy-port", type=int, default=8080)
    parser.add_argument("--proxy-user", help="Proxy username")
    parser.add_argument("--proxy-pass", help="Proxy password")
    if saved:
        parser.add_argument(
            "--saved-proxy", action="store_true",
            help="Use the proxy settings saved in the settings store",
        )


def _add_request_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("url", help="Target URL")
    parser.add_argument("--method", "-X", default="GET", help="GET, POST, PUT or DELETE")
    parser.add_argument(
        "--header", "-H", action="append", dest="headers",
        help="Request header 'Name: value' (repeatable)",
    )
    parser.add_argument("--data", "-d", help="Request body")
    _add_proxy_args(parser)


def cmd_serve(args):
    """Start the command/event server."""
    import uvicorn

    from ..server import create_app

    config = load_config(args.config)
    host = args.host or config.server.host
    port = args.port or config.server.port

    class _SuppressCancelled(logging.Filter):
        def filter(self, record: logging.LogRecord) -> bool:
            if record.exc_info and record.exc_info[0] is asyncio.CancelledError:
                return False
            return True

    logging.getLogger("uvicorn.error").addFilter(_SuppressCancelled())

    log_level = config.logging.level
    if log_level == "warn":
        log_level = "warning"

    app = create_app(config)
    print(f"chat-relay backend on {host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level=log_level, timeout_graceful_shutdown=2)


def cmd_request(args):
    """Relay a single request and print the result."""
    config = load_config(args.config)
    service = RelayService(config)
    spec = RequestSpec(
        url=args.url,
        method=args.method,
        headers=_parse_headers(args.headers),
        body=args.data,
        proxy=_proxy_from_args(args, config),
    )
    try:
        result = asyncio.run(service.send_http_request(spec))
    except RelayError as e:
        print(f"Request failed: {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        return
    print(f"HTTP {result.status}{'' if result.success else ' (not successful)'}")
    for name, value in sorted(result.headers.items()):
        print(f"{name}: {value}")
    print()
    print(result.body)


async def _run_stream(service: RelayService, spec: StreamRequestSpec) -> StreamEvent | None:
    done = asyncio.Event()
    terminal: list[StreamEvent] = []

    def on_event(event: StreamEvent) -> None:
        if event.stream_id != spec.stream_id:
            return
        if event.event_type is EventType.DATA:
            sys.stdout.write(event.data or "")
            sys.stdout.flush()
        else:
            terminal.append(event)
            done.set()

    remove = service.emitter.add_listener(on_event)
    try:
        try:
            await service.send_stream_request(spec)
        except RelayError:
            if terminal:
                return terminal[0]
            raise
        try:
            await done.wait()
        except asyncio.CancelledError:
            service.cancel_stream(spec.stream_id)
            raise
        return terminal[0]
    finally:
        remove()
        await service.shutdown()


def cmd_stream(args):
    """Relay a streamed response, printing chunks as they arrive."""
    config = load_config(args.config)
    service = RelayService(config)
    spec = StreamRequestSpec(
        url=args.url,
        method=args.method,
        headers=_parse_headers(args.headers),
        body=args.data,
        proxy=_proxy_from_args(args, config),
        stream_id=args.stream_id,
    )
    try:
        terminal = asyncio.run(_run_stream(service, spec))
    except RelayError as e:
        print(f"Stream failed: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nStream cancelled.", file=sys.stderr)
        sys.exit(130)

    print()
    if terminal is None or terminal.event_type is EventType.ERROR:
        error = terminal.error if terminal else "stream did not start"
        print(f"Stream error: {error}", file=sys.stderr)
        sys.exit(1)


def cmd_test_proxy(args):
    """Probe a well-known URL through the given proxy."""
    config = load_config(args.config)
    proxy = _proxy_from_args(args, config)
    if proxy is None:
        print("Error: --proxy-host or --saved-proxy is required", file=sys.stderr)
        sys.exit(1)
    service = RelayService(config)
    try:
        message = asyncio.run(service.test_proxy_connection(proxy))
    except RelayError as e:
        print(f"Proxy test failed: {e}", file=sys.stderr)
        sys.exit(1)
    print(message)


def cmd_proxy(args):
    """Show, save or clear the stored proxy settings."""
    config = load_config(args.config)
    store = _get_store(config)
    try:
        if args.proxy_action == "set":
            settings = ProxySettings(
                enabled=True,
                proxy_type=args.proxy_type,
                host=args.proxy_host,
                port=args.proxy_port,
                requires_auth=bool(args.proxy_user or args.proxy_pass),
                username=args.proxy_user or "",
                password=args.proxy_pass or "",
            )
            try:
                url = resolve_proxy_url(settings.to_proxy_config())
            except RelayError as e:
                print(f"Invalid proxy: {e}", file=sys.stderr)
                sys.exit(1)
            store.save_proxy_settings(settings)
            print(f"Saved proxy {url}")
        elif args.proxy_action == "clear":
            store.save_proxy_settings(ProxySettings(enabled=False))
            print("Proxy disabled.")
        else:
            settings = store.get_proxy_settings()
            if settings is None:
                print("No saved proxy settings.")
                return
            shown = settings.to_dict()
            if shown["password"]:
                shown["password"] = "********"
            print(json.dumps(shown, indent=2))
    finally:
        store.close()


def cmd_config_validate(args):
    """Validate config file."""
    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    errors = validate_config(config)
    if errors:
        print("Config validation errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    print("Config is valid.")


def main():
    parser = argparse.ArgumentParser(
        prog="chat-relay",
        description="Proxy-aware HTTP relay backend for the chat desktop app",
    )
    parser.add_argument("--config", "-c", help="Path to config file")

    subparsers = parser.add_subparsers(dest="command")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the command/event server")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", "-p", type=int, default=None)

    # request
    request_parser = subparsers.add_parser("request", help="Relay a single HTTP request")
    _add_request_args(request_parser)
    request_parser.add_argument("--json", action="store_true", help="Print the raw result JSON")

    # stream
    stream_parser = subparsers.add_parser("stream", help="Relay a streamed HTTP response")
    _add_request_args(stream_parser)
    stream_parser.add_argument("--stream-id", default="cli", help="Stream identifier")

    # test-proxy
    test_proxy_parser = subparsers.add_parser("test-proxy", help="Test a proxy connection")
    _add_proxy_args(test_proxy_parser)

    # proxy show|set|clear
    proxy_parser = subparsers.add_parser("proxy", help="Manage saved proxy settings")
    proxy_sub = proxy_parser.add_subparsers(dest="proxy_action")
    proxy_sub.add_parser("show", help="Show saved proxy settings")
    proxy_set_parser = proxy_sub.add_parser("set", help="Save and enable a proxy")
    _add_proxy_args(proxy_set_parser, saved=False)
    proxy_sub.add_parser("clear", help="Disable the saved proxy")

    # config validate
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config file")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        level = load_config(args.config).logging.level
    except FileNotFoundError:
        level = "info"
    configure_logging(level)

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "request":
        cmd_request(args)
    elif args.command == "stream":
        cmd_stream(args)
    elif args.command == "test-proxy":
        cmd_test_proxy(args)
    elif args.command == "proxy":
        if args.proxy_action == "set" and not args.proxy_host:
            print("Error: --proxy-host is required", file=sys.stderr)
            sys.exit(1)
        cmd_proxy(args)
    elif args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            print("Usage: chat-relay config validate")
            sys.exit(1)


if __name__ == "__main__":
    main()
