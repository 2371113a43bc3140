"""Shared fixtures: an in-memory bucket, a temporary vault and a sqlite state store."""

import os
from pathlib import Path

import pytest

from vaultsync.core import ReconciliationEngine, SidecarMetadata
from vaultsync.core import alias as alias_codec
from vaultsync.core.sidecar import SidecarManager
from vaultsync.database import SyncStateService, init_database
from vaultsync.storage import MemoryObjectStore
from vaultsync.vault import VaultFileSystem


T0 = 1_700_000_000_000


def file_mtime_ms(path: Path) -> int:
    return os.stat(path).st_mtime_ns // 1_000_000


@pytest.fixture
def store():
    return MemoryObjectStore()


@pytest.fixture
def vault_dir(tmp_path):
    root = tmp_path / "vault"
    root.mkdir()
    return root


@pytest.fixture
def vault(vault_dir):
    return VaultFileSystem(str(vault_dir))


@pytest.fixture
def state():
    manager = init_database("sqlite:///:memory:")
    yield SyncStateService(manager)
    manager.close()


@pytest.fixture
def engine(store, vault, state):
    return ReconciliationEngine(store, vault, state=state, max_concurrency=4)


@pytest.fixture
def make_file(vault_dir):
    """Create a vault file with an exact mtime in milliseconds."""

    def _make(path: str, content: bytes, mtime_ms: int) -> Path:
        target = vault_dir / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        os.utime(target, ns=(mtime_ms * 1_000_000, mtime_ms * 1_000_000))
        return target

    return _make


@pytest.fixture
def seed(store):
    """Store a version (payload and sidecar) as another device would."""

    async def _seed(path: str, tag: int, content: bytes):
        version = alias_codec.version_for(path, tag)
        await SidecarManager(store).store_version(version, content, SidecarMetadata.for_path(path, tag))
        return version

    return _seed
