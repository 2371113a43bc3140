"""Application configuration settings."""

from enum import Enum
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageBackend(str, Enum):
    """Supported remote object store backends."""
    SUPABASE = "supabase"
    MEMORY = "memory"


class RemoteDeletePolicy(str, Enum):
    """What a full pass does with a previously synced file that vanished remotely."""
    REUPLOAD = "reupload"
    DELETE_LOCAL = "delete_local"


class StorageSettings(BaseSettings):
    """Remote object store configuration."""

    backend: StorageBackend = Field(default=StorageBackend.SUPABASE)
    supabase_url: str = Field(default="")
    supabase_key: str = Field(default="")
    bucket: str = Field(default="notes")
    timeout_seconds: float = Field(default=30.0)
    list_page_size: int = Field(default=1000)

    model_config = SettingsConfigDict(env_prefix="VAULTSYNC_STORAGE_")

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("Storage timeout must be positive")
        return v

    @field_validator("list_page_size")
    @classmethod
    def validate_page_size(cls, v):
        if v < 1:
            raise ValueError("List page size must be at least 1")
        return v


class SyncSettings(BaseSettings):
    """Sync engine configuration."""

    vault_path: str = Field(default=".")
    retention_count: int = Field(default=3)
    flush_interval_seconds: float = Field(default=5.0)
    poll_interval_seconds: float = Field(default=2.0)
    full_sync_interval_minutes: int = Field(default=0)  # 0 = manual/startup only
    gc_interval_minutes: int = Field(default=60)  # 0 = on demand only
    max_concurrency: int = Field(default=8)
    remote_delete_policy: RemoteDeletePolicy = Field(default=RemoteDeletePolicy.REUPLOAD)
    sync_on_startup: bool = Field(default=True)

    model_config = SettingsConfigDict(env_prefix="VAULTSYNC_SYNC_")

    @field_validator("retention_count")
    @classmethod
    def validate_retention(cls, v):
        if v < 1:
            raise ValueError("Retention count must keep at least 1 version")
        return v

    @field_validator("flush_interval_seconds", "poll_interval_seconds")
    @classmethod
    def validate_intervals(cls, v):
        if v <= 0:
            raise ValueError("Interval must be positive")
        return v

    @field_validator("full_sync_interval_minutes", "gc_interval_minutes")
    @classmethod
    def validate_schedule_minutes(cls, v):
        if v < 0:
            raise ValueError("Schedule interval cannot be negative")
        return v

    @field_validator("max_concurrency")
    @classmethod
    def validate_concurrency(cls, v):
        if v < 1:
            raise ValueError("Must allow at least 1 concurrent operation")
        return v


class StateSettings(BaseSettings):
    """Sync state database configuration."""

    # None = sqlite database in the hidden .vaultsync directory of the vault
    database_url: Optional[str] = Field(default=None)

    model_config = SettingsConfigDict(env_prefix="VAULTSYNC_STATE_")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(default="INFO")
    format: str = Field(default="console")
    file_path: Optional[str] = Field(default=None)

    model_config = SettingsConfigDict(env_prefix="VAULTSYNC_LOG_")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v):
        if v not in ("json", "console"):
            raise ValueError("Log format must be 'json' or 'console'")
        return v


class ServerSettings(BaseSettings):
    """Health/status HTTP server used by the watch daemon."""

    enabled: bool = Field(default=False)
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080)

    model_config = SettingsConfigDict(env_prefix="VAULTSYNC_SERVER_")


class AppSettings(BaseSettings):
    """Main application settings."""

    name: str = Field(default="vaultsync")
    version: str = Field(default="0.1.0")
    environment: str = Field(default="development")

    # Sub-settings
    storage: StorageSettings = Field(default_factory=StorageSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    state: StateSettings = Field(default_factory=StateSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    model_config = SettingsConfigDict(
        env_prefix="VAULTSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance, created on first use
_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    """Get application settings."""
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


def set_settings(settings: AppSettings) -> AppSettings:
    """Replace the global settings (used by the config loader and tests)."""
    global _settings
    _settings = settings
    return _settings
