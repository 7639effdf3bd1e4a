"""SQLiteSettingsStore: settings persistence using stdlib sqlite3."""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path

from ..types import ProxySettings
from .base import SettingsStore

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS proxy_settings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    enabled INTEGER NOT NULL DEFAULT 0,
    proxy_type TEXT NOT NULL DEFAULT 'http',
    host TEXT NOT NULL DEFAULT '',
    port INTEGER NOT NULL DEFAULT 0,
    requires_auth INTEGER NOT NULL DEFAULT 0,
    username TEXT NOT NULL DEFAULT '',
    password TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS app_settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


def _dt_to_str(dt: datetime) -> str:
    return dt.isoformat()


def _str_to_dt(s: str) -> datetime:
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _row_to_proxy_settings(row: sqlite3.Row) -> ProxySettings:
    return ProxySettings(
        enabled=bool(row["enabled"]),
        proxy_type=row["proxy_type"],
        host=row["host"],
        port=row["port"],
        requires_auth=bool(row["requires_auth"]),
        username=row["username"],
        password=row["password"],
        updated_at=_str_to_dt(row["updated_at"]),
    )


class SQLiteSettingsStore(SettingsStore):
    """SQLite-backed settings: one proxy_settings row plus key/value app settings."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        # Settings routes call in from the server threadpool.
        self._lock = threading.Lock()
        self._ensure_schema()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        conn.executescript(SCHEMA_SQL)
        conn.commit()

    def get_proxy_settings(self) -> ProxySettings | None:
        with self._lock:
            row = self._get_conn().execute(
                "SELECT * FROM proxy_settings ORDER BY id DESC LIMIT 1"
            ).fetchone()
        return _row_to_proxy_settings(row) if row else None

    def save_proxy_settings(self, settings: ProxySettings) -> None:
        with self._lock:
            conn = self._get_conn()
            with conn:
                conn.execute("DELETE FROM proxy_settings")
                conn.execute(
                    """INSERT INTO proxy_settings
                       (enabled, proxy_type, host, port, requires_auth,
                        username, password, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        int(settings.enabled),
                        settings.proxy_type,
                        settings.host,
                        settings.port,
                        int(settings.requires_auth),
                        settings.username,
                        settings.password,
                        _dt_to_str(settings.updated_at),
                    ),
                )

    def get_setting(self, key: str) -> str | None:
        with self._lock:
            row = self._get_conn().execute(
                "SELECT value FROM app_settings WHERE key = ?", (key,),
            ).fetchone()
        return row["value"] if row else None

    def save_setting(self, key: str, value: str) -> None:
        with self._lock:
            conn = self._get_conn()
            with conn:
                conn.execute(
                    """INSERT OR REPLACE INTO app_settings (key, value, updated_at)
                       VALUES (?, ?, ?)""",
                    (key, value, _dt_to_str(datetime.now(timezone.utc))),
                )

    def delete_setting(self, key: str) -> bool:
        with self._lock:
            conn = self._get_conn()
            with conn:
                cursor = conn.execute("DELETE FROM app_settings WHERE key = ?", (key,))
        return cursor.rowcount > 0

    def get_all_settings(self) -> dict[str, str]:
        with self._lock:
            rows = self._get_conn().execute(
                "SELECT key, value FROM app_settings ORDER BY key"
            ).fetchall()
        return {r["key"]: r["value"] for r in rows}

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
