"""SettingsStore abstract base class: persistence consumed by the relay."""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..types import ProxySettings


class SettingsStore(ABC):
    """Pluggable storage backend for proxy and application settings."""

    @abstractmethod
    def get_proxy_settings(self) -> ProxySettings | None:
        """Return the saved proxy settings. None if never saved."""

    @abstractmethod
    def save_proxy_settings(self, settings: ProxySettings) -> None:
        """Replace the saved proxy settings (single row)."""

    @abstractmethod
    def get_setting(self, key: str) -> str | None:
        """Retrieve an app setting by key. None if not found."""

    @abstractmethod
    def save_setting(self, key: str, value: str) -> None:
        """Store or update an app setting. Upsert on key."""

    @abstractmethod
    def delete_setting(self, key: str) -> bool:
        """Delete an app setting. Returns True if deleted."""

    @abstractmethod
    def get_all_settings(self) -> dict[str, str]:
        """All app settings as a key -> value mapping."""

    def close(self) -> None:
        """Release any held resources."""
