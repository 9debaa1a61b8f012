"""Configuration package."""

from ledgersync.config.settings import (
    GeminiSettings,
    LocalStoreSettings,
    RemoteSettings,
    Settings,
    StatusPolicy,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "GeminiSettings",
    "LocalStoreSettings",
    "RemoteSettings",
    "Settings",
    "StatusPolicy",
    "get_settings",
    "validate_all_settings",
]
