"""Configuration package for vaultsync."""

from .settings import (
    StorageBackend,
    RemoteDeletePolicy,
    StorageSettings,
    SyncSettings,
    StateSettings,
    LoggingSettings,
    ServerSettings,
    AppSettings,
    get_settings,
    set_settings
)

from .loader import (
    ConfigLoader,
    validate_settings
)

from ..exceptions import ConfigurationError

__all__ = [
    "StorageBackend",
    "RemoteDeletePolicy",
    "StorageSettings",
    "SyncSettings",
    "StateSettings",
    "LoggingSettings",
    "ServerSettings",
    "AppSettings",
    "get_settings",
    "set_settings",

    "ConfigLoader",
    "ConfigurationError",
    "validate_settings"
]
