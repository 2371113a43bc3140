"""Configuration loader for JSON/YAML files."""

import json
from pathlib import Path
from typing import Dict, Any, Union

import yaml
from pydantic import ValidationError

from .settings import (
    AppSettings,
    LoggingSettings,
    ServerSettings,
    StateSettings,
    StorageBackend,
    StorageSettings,
    SyncSettings,
)
from ..exceptions import ConfigurationError
from ..utils.logging import get_logger


SECTION_CLASSES = {
    "storage": StorageSettings,
    "sync": SyncSettings,
    "state": StateSettings,
    "logging": LoggingSettings,
    "server": ServerSettings,
}


class ConfigLoader:
    """Loads settings overrides from a file and validates them."""

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def load_from_file(self, file_path: Union[str, Path]) -> AppSettings:
        """Load settings from a JSON or YAML file.

        Values in the file take precedence over environment variables;
        anything the file leaves out still comes from the environment.

        Args:
            file_path: Path to configuration file

        Returns:
            Validated AppSettings object

        Raises:
            ConfigurationError: If file cannot be loaded or validated
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise ConfigurationError(f"Configuration file not found: {file_path}")

        self.logger.info("Loading configuration from file", file_path=str(file_path))

        try:
            with open(file_path, "r", encoding="utf-8") as f:
                if file_path.suffix.lower() in [".yaml", ".yml"]:
                    data = yaml.safe_load(f) or {}
                elif file_path.suffix.lower() == ".json":
                    data = json.load(f)
                else:
                    raise ConfigurationError(f"Unsupported file format: {file_path.suffix}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML format: {e}")
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON format: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError("Configuration file must contain a mapping at the top level")

        return self.load_from_dict(data)

    def load_from_dict(self, data: Dict[str, Any]) -> AppSettings:
        """Load settings from a dictionary of section overrides."""
        try:
            kwargs: Dict[str, Any] = {}
            for name, value in data.items():
                section_class = SECTION_CLASSES.get(name)
                if section_class is not None and isinstance(value, dict):
                    kwargs[name] = section_class(**value)
                else:
                    kwargs[name] = value

            settings = AppSettings(**kwargs)

        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

        self.logger.info(
            "Configuration loaded",
            backend=settings.storage.backend.value,
            vault_path=settings.sync.vault_path
        )
        return settings

    def save_to_file(self, settings: AppSettings, file_path: Union[str, Path]):
        """Write settings to YAML or JSON, omitting credentials."""
        file_path = Path(file_path)
        data = settings.model_dump(mode="json", exclude={"storage": {"supabase_key"}})

        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, "w", encoding="utf-8") as f:
            if file_path.suffix.lower() == ".json":
                json.dump(data, f, indent=2)
            else:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)

        self.logger.info("Configuration saved", file_path=str(file_path))


def validate_settings(settings: AppSettings) -> None:
    """Fail fast on settings that make any sync pass impossible.

    Raises:
        ConfigurationError: On missing credentials or an unusable vault path
    """
    storage = settings.storage

    if storage.backend == StorageBackend.SUPABASE:
        if not storage.supabase_url or not storage.supabase_key:
            raise ConfigurationError(
                "Supabase URL and key are required "
                "(VAULTSYNC_STORAGE_SUPABASE_URL / VAULTSYNC_STORAGE_SUPABASE_KEY)"
            )
        if not storage.supabase_url.startswith(("http://", "https://")):
            raise ConfigurationError(f"Invalid Supabase URL: {storage.supabase_url}")

    if not storage.bucket:
        raise ConfigurationError("Storage bucket name is required")

    vault = Path(settings.sync.vault_path).expanduser()
    if not vault.is_dir():
        raise ConfigurationError(f"Vault path is not a directory: {vault}")
