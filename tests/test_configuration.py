"""Tests for settings, the config loader and the store factory."""

import json

import pytest
import yaml
from pydantic import ValidationError

from vaultsync.config import (
    AppSettings,
    ConfigLoader,
    ConfigurationError,
    RemoteDeletePolicy,
    StorageBackend,
    SyncSettings,
    validate_settings,
)
from vaultsync.storage import MemoryObjectStore, StoreFactory, SupabaseObjectStore


class TestSettings:
    """Test pydantic settings."""

    def test_defaults(self):
        settings = AppSettings()

        assert settings.sync.retention_count == 3
        assert settings.sync.remote_delete_policy == RemoteDeletePolicy.REUPLOAD
        assert settings.storage.bucket == "notes"
        assert settings.state.database_url is None

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("VAULTSYNC_SYNC_RETENTION_COUNT", "5")
        monkeypatch.setenv("VAULTSYNC_STORAGE_BACKEND", "memory")
        monkeypatch.setenv("VAULTSYNC_SYNC_REMOTE_DELETE_POLICY", "delete_local")

        settings = AppSettings()

        assert settings.sync.retention_count == 5
        assert settings.storage.backend == StorageBackend.MEMORY
        assert settings.sync.remote_delete_policy == RemoteDeletePolicy.DELETE_LOCAL

    def test_validators(self):
        with pytest.raises(ValidationError):
            SyncSettings(retention_count=0)
        with pytest.raises(ValidationError):
            SyncSettings(max_concurrency=0)
        with pytest.raises(ValidationError):
            SyncSettings(flush_interval_seconds=0)


class TestConfigLoader:
    """Test loading settings files."""

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "vaultsync.yaml"
        path.write_text(yaml.safe_dump({
            "storage": {"backend": "memory", "bucket": "my-notes"},
            "sync": {"vault_path": str(tmp_path), "retention_count": 7},
        }))

        settings = ConfigLoader().load_from_file(path)

        assert settings.storage.backend == StorageBackend.MEMORY
        assert settings.storage.bucket == "my-notes"
        assert settings.sync.retention_count == 7

    def test_load_json(self, tmp_path):
        path = tmp_path / "vaultsync.json"
        path.write_text(json.dumps({"sync": {"max_concurrency": 2}}))

        settings = ConfigLoader().load_from_file(path)

        assert settings.sync.max_concurrency == 2

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "vaultsync.yaml"
        path.write_text(yaml.safe_dump({"sync": {"retention_count": 0}}))

        with pytest.raises(ConfigurationError):
            ConfigLoader().load_from_file(path)

    def test_missing_and_unsupported_files(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ConfigLoader().load_from_file(tmp_path / "missing.yaml")

        path = tmp_path / "vaultsync.toml"
        path.write_text("x = 1")
        with pytest.raises(ConfigurationError):
            ConfigLoader().load_from_file(path)

    def test_save_omits_credentials(self, tmp_path):
        settings = ConfigLoader().load_from_dict({"storage": {"supabase_key": "secret"}})
        path = tmp_path / "out.yaml"

        ConfigLoader().save_to_file(settings, path)

        assert "secret" not in path.read_text()


class TestValidateSettings:
    """Test fail-fast validation."""

    def test_supabase_requires_credentials(self, tmp_path):
        settings = ConfigLoader().load_from_dict({
            "storage": {"backend": "supabase", "supabase_url": "", "supabase_key": ""},
            "sync": {"vault_path": str(tmp_path)},
        })

        with pytest.raises(ConfigurationError):
            validate_settings(settings)

    def test_supabase_url_must_be_http(self, tmp_path):
        settings = ConfigLoader().load_from_dict({
            "storage": {"backend": "supabase", "supabase_url": "ftp://x", "supabase_key": "k"},
            "sync": {"vault_path": str(tmp_path)},
        })

        with pytest.raises(ConfigurationError):
            validate_settings(settings)

    def test_vault_must_exist(self, tmp_path):
        settings = ConfigLoader().load_from_dict({
            "storage": {"backend": "memory"},
            "sync": {"vault_path": str(tmp_path / "missing")},
        })

        with pytest.raises(ConfigurationError):
            validate_settings(settings)

    def test_valid_memory_settings(self, tmp_path):
        settings = ConfigLoader().load_from_dict({
            "storage": {"backend": "memory"},
            "sync": {"vault_path": str(tmp_path)},
        })

        validate_settings(settings)


class TestStoreFactory:
    """Test backend selection."""

    def test_memory_backend(self):
        settings = ConfigLoader().load_from_dict({"storage": {"backend": "memory", "bucket": "b"}})

        store = StoreFactory.create_store(settings)

        assert isinstance(store, MemoryObjectStore)
        assert store.bucket == "b"

    def test_supabase_backend_is_lazy(self):
        settings = ConfigLoader().load_from_dict({
            "storage": {"backend": "supabase", "supabase_url": "", "supabase_key": "", "timeout_seconds": 5}
        })

        store = StoreFactory.create_store(settings)

        assert isinstance(store, SupabaseObjectStore)
        assert store.timeout_seconds == 5
        with pytest.raises(ConfigurationError):
            store.validate_configuration()

    def test_supported_backends(self):
        assert set(StoreFactory.get_supported_backends()) == {StorageBackend.SUPABASE, StorageBackend.MEMORY}
