"""Configuration module for SonicVault."""

from .settings import (
    AuthSettings,
    ConversionSettings,
    DatabaseSettings,
    ObservabilitySettings,
    Settings,
    SpotifySettings,
    StorageSettings,
    get_settings,
)

__all__ = [
    "AuthSettings",
    "ConversionSettings",
    "DatabaseSettings",
    "ObservabilitySettings",
    "Settings",
    "SpotifySettings",
    "StorageSettings",
    "get_settings",
]
