"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

from .types import (
    AppConfig,
    LoggingConfig,
    RelayConfig,
    ServerConfig,
    StorageConfig,
)

CONFIG_FILENAMES = [
    "chat-relay.yaml",
    "chat-relay.yml",
    "chat-relay.json",
]

LOG_LEVELS = ("critical", "error", "warning", "warn", "info", "debug")


def _discover_config() -> Path | None:
    """Search CWD then parent dirs up to home for a config file."""
    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def _build_config(raw: dict[str, Any]) -> AppConfig:
    """Build an AppConfig from a raw dict."""
    relay_raw = raw.get("relay", {}) or {}
    relay_config = RelayConfig(
        request_timeout=float(relay_raw.get("request_timeout", 30.0)),
        user_agent=relay_raw.get("user_agent", ""),
        probe_url=relay_raw.get("probe_url", "https://httpbin.org/ip"),
        follow_redirects=relay_raw.get("follow_redirects", True),
    )

    server_raw = raw.get("server", {}) or {}
    server_config = ServerConfig(
        host=server_raw.get("host", "127.0.0.1"),
        port=int(server_raw.get("port", 5858)),
    )

    logging_raw = raw.get("logging", {}) or {}
    logging_config = LoggingConfig(
        level=str(logging_raw.get("level", "info")).lower(),
    )

    storage_raw = raw.get("storage", {}) or {}
    storage_config = StorageConfig(
        sqlite_path=storage_raw.get("sqlite_path", ".chat-relay/database.sqlite"),
    )

    return AppConfig(
        version=str(raw.get("version", "0.1")),
        relay=relay_config,
        server=server_config,
        logging=logging_config,
        storage=storage_config,
    )


def validate_config(config: AppConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    if config.relay.request_timeout <= 0:
        errors.append(
            f"relay.request_timeout must be > 0 (got {config.relay.request_timeout})"
        )

    if urlsplit(config.relay.probe_url).scheme not in ("http", "https"):
        errors.append(f"relay.probe_url must be an http(s) URL: {config.relay.probe_url}")

    if not 1 <= config.server.port <= 65535:
        errors.append(f"server.port must be in 1..65535 (got {config.server.port})")

    if config.logging.level not in LOG_LEVELS:
        errors.append(
            f"logging.level '{config.logging.level}' is not one of {', '.join(LOG_LEVELS)}"
        )

    if not config.storage.sqlite_path:
        errors.append("storage.sqlite_path must not be empty")

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> AppConfig:
    """Load config from dict, explicit path, or auto-discover."""
    if config_dict is not None:
        return _build_config(config_dict)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        return _build_config({})

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text) or {}

    return _build_config(raw)
