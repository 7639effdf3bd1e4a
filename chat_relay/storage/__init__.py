from .base import SettingsStore
from .sqlite import SQLiteSettingsStore

__all__ = ["SettingsStore", "SQLiteSettingsStore"]
