"""Configuration module for tracksync."""

from .settings import (
    CoverStorageSettings,
    DatabaseSettings,
    Settings,
    SpotifySettings,
    SyncSettings,
    get_settings,
)

__all__ = [
    "CoverStorageSettings",
    "DatabaseSettings",
    "Settings",
    "SpotifySettings",
    "SyncSettings",
    "get_settings",
]
