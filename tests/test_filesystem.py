"""Tests for the local vault file system and its polling watcher."""

import asyncio
import os

import pytest

from conftest import T0, file_mtime_ms
from vaultsync.exceptions import LocalFileVanished
from vaultsync.vault import (
    FileCreated,
    FileDeleted,
    FileModified,
    FileRenamed,
    VaultFileSystem,
    normalize_vault_path,
)


class TestNormalizeVaultPath:
    """Test vault path normalization."""

    def test_posix_separators_and_dots(self):
        assert normalize_vault_path("./notes\\daily/a.md") == "notes/daily/a.md"
        assert normalize_vault_path("/a.md") == "a.md"

    def test_nfc(self):
        decomposed = "Cafe\u0301.md"
        assert normalize_vault_path(decomposed) == "Caf\u00e9.md"


class TestVaultFileSystem:
    """Test file primitives."""

    @pytest.mark.asyncio
    async def test_list_files_skips_hidden_entries(self, vault, make_file):
        make_file("a.md", b"a", T0)
        make_file("notes/b.md", b"b", T0 + 1)
        make_file(".vaultsync/state.db", b"db", T0)
        make_file(".obsidian/workspace.json", b"{}", T0)
        make_file("notes/.hidden.md", b"h", T0)

        records = await vault.list_files()

        assert [(r.path, r.modified_at, r.size) for r in records] == [
            ("a.md", T0, 1),
            ("notes/b.md", T0 + 1, 1),
        ]

    @pytest.mark.asyncio
    async def test_write_creates_parents_and_pins_mtime(self, vault, vault_dir):
        record = await vault.write_bytes("deep/nested/file.md", b"body", modified_at=T0 + 42)

        target = vault_dir / "deep" / "nested" / "file.md"
        assert target.read_bytes() == b"body"
        assert file_mtime_ms(target) == T0 + 42
        assert record.modified_at == T0 + 42
        assert not [p for p in target.parent.iterdir() if p.name.startswith(".vaultsync-")]

    @pytest.mark.asyncio
    async def test_read_missing_file(self, vault):
        with pytest.raises(LocalFileVanished):
            await vault.read_bytes("missing.md")

    @pytest.mark.asyncio
    async def test_stat(self, vault, make_file):
        make_file("a.md", b"abc", T0)

        record = await vault.stat("a.md")

        assert record.modified_at == T0
        assert record.size == 3
        assert await vault.stat("missing.md") is None

    @pytest.mark.asyncio
    async def test_delete(self, vault, make_file, vault_dir):
        make_file("a.md", b"a", T0)

        assert await vault.delete("a.md") is True
        assert await vault.delete("a.md") is False
        assert not (vault_dir / "a.md").exists()

    @pytest.mark.asyncio
    async def test_rejects_paths_outside_the_vault(self, vault):
        with pytest.raises(ValueError):
            await vault.read_bytes("../outside.md")
        with pytest.raises(ValueError):
            await vault.write_bytes("", b"x")

    @pytest.mark.asyncio
    async def test_rename_publishes_event(self, vault, make_file, vault_dir):
        make_file("old.md", b"body", T0)
        events = vault.subscribe()

        await vault.rename("old.md", "archive/new.md")
        event = await asyncio.wait_for(events.__anext__(), timeout=1)

        assert event == FileRenamed("archive/new.md", old_path="old.md")
        assert file_mtime_ms(vault_dir / "archive" / "new.md") == T0
        await events.aclose()

    @pytest.mark.asyncio
    async def test_rename_missing_file(self, vault):
        with pytest.raises(LocalFileVanished):
            await vault.rename("missing.md", "other.md")


class TestPollChanges:
    """Test change detection by snapshot diffing."""

    @pytest.mark.asyncio
    async def test_first_poll_only_primes(self, vault, make_file):
        make_file("a.md", b"a", T0)

        assert await vault.poll_changes() == []

    @pytest.mark.asyncio
    async def test_create_modify_delete(self, vault, make_file, vault_dir):
        make_file("a.md", b"a", T0)
        await vault.prime()

        make_file("b.md", b"b", T0)
        make_file("a.md", b"changed", T0 + 5)
        events = await vault.poll_changes()
        assert set(events) == {FileCreated("b.md"), FileModified("a.md")}

        (vault_dir / "b.md").unlink()
        assert await vault.poll_changes() == [FileDeleted("b.md")]

    @pytest.mark.asyncio
    async def test_rename_detection(self, vault, make_file, vault_dir):
        make_file("old.md", b"body", T0)
        await vault.prime()

        os.rename(vault_dir / "old.md", vault_dir / "new.md")

        assert await vault.poll_changes() == [FileRenamed("new.md", old_path="old.md")]

    @pytest.mark.asyncio
    async def test_own_writes_are_not_reported(self, vault, make_file):
        make_file("a.md", b"a", T0)
        await vault.prime()

        await vault.write_bytes("a.md", b"from remote", modified_at=T0 + 9)
        await vault.write_bytes("b.md", b"new from remote", modified_at=T0)
        await vault.delete("a.md")

        assert await vault.poll_changes() == []

    @pytest.mark.asyncio
    async def test_watcher_publishes_to_subscribers(self, vault_dir, make_file):
        vault = VaultFileSystem(str(vault_dir))
        events = vault.subscribe()
        await vault.prime()
        vault.start_watching(interval=0.01)

        try:
            make_file("new.md", b"x", T0)
            event = await asyncio.wait_for(events.__anext__(), timeout=2)
        finally:
            await vault.stop_watching()
            await events.aclose()

        assert event == FileCreated("new.md")
