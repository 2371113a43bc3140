"""Tests for metadata sidecars."""

import json

import pytest

from vaultsync.core import SidecarMetadata
from vaultsync.core import alias as alias_codec
from vaultsync.core.sidecar import SidecarManager, guess_content_type, has_sidecar
from vaultsync.exceptions import PartialMoveFailure, SidecarMissing, TransientIOError
from vaultsync.storage import MemoryObjectStore


class TestSidecarMetadata:
    """Test the sidecar document."""

    def test_wire_format_uses_camel_case(self):
        sidecar = SidecarMetadata.for_path("notes/Daily Plan.md", 1234)

        document = json.loads(sidecar.to_json())

        assert document == {
            "originalName": "Daily Plan.md",
            "originalPath": "notes/Daily Plan.md",
            "timeStamp": 1234
        }

    def test_from_json(self):
        raw = b'{"originalName": "a.md", "originalPath": "x/a.md", "timeStamp": 9}'
        sidecar = SidecarMetadata.from_json(raw)

        assert sidecar.original_path == "x/a.md"
        assert sidecar.time_stamp == 9

    def test_content_type_guess(self):
        assert guess_content_type("notes/a.txt") == "text/plain"
        assert guess_content_type("notes/no-extension") == "application/octet-stream"

    def test_has_sidecar(self):
        listing = ["a.md__1.md", "a.md__1.md.meta.json", "b.md__2.md"]
        assert has_sidecar("a.md__1.md", listing)
        assert not has_sidecar("b.md__2.md", listing)


class TestSidecarManager:
    """Test reading and writing sidecars against a bucket."""

    def setup_method(self):
        """Set up test fixtures."""
        self.store = MemoryObjectStore()
        self.manager = SidecarManager(self.store)
        self.version = alias_codec.version_for("notes/a.md", 100)
        self.sidecar = SidecarMetadata.for_path("notes/a.md", 100)

    @pytest.mark.asyncio
    async def test_write_then_read(self):
        await self.manager.write(self.version.payload_key, self.sidecar)

        assert self.store.content_types[self.version.sidecar_key] == "application/json"
        assert await self.manager.read(self.version.payload_key) == self.sidecar

    @pytest.mark.asyncio
    async def test_read_missing_sidecar(self):
        with pytest.raises(SidecarMissing) as exc_info:
            await self.manager.read(self.version.payload_key)

        assert exc_info.value.payload_key == self.version.payload_key

    @pytest.mark.asyncio
    async def test_read_unparseable_sidecar(self):
        await self.store.upload(self.version.sidecar_key, b"not json")

        with pytest.raises(SidecarMissing):
            await self.manager.read(self.version.payload_key)

    @pytest.mark.asyncio
    async def test_store_version_writes_payload_then_sidecar(self):
        await self.manager.store_version(self.version, b"# hello", self.sidecar)

        uploads = [key for op, key in self.store.operations if op == "upload"]
        assert uploads == [self.version.payload_key, self.version.sidecar_key]
        assert self.store.objects[self.version.payload_key] == b"# hello"

    @pytest.mark.asyncio
    async def test_sidecar_failure_leaves_orphan_and_propagates(self):
        self.store.fail("upload", self.version.sidecar_key)

        with pytest.raises(TransientIOError):
            await self.manager.store_version(self.version, b"# hello", self.sidecar)

        assert self.version.payload_key in self.store.objects
        assert self.version.sidecar_key not in self.store.objects

    @pytest.mark.asyncio
    async def test_remove_version_deletes_both_keys(self):
        await self.manager.store_version(self.version, b"data", self.sidecar)

        await self.manager.remove_version(self.version)

        assert self.store.objects == {}

    @pytest.mark.asyncio
    async def test_move_version_rewrites_provenance(self):
        await self.manager.store_version(self.version, b"data", self.sidecar)
        target = alias_codec.version_for("archive/a.md", 100)

        await self.manager.move_version(self.version, target, SidecarMetadata.for_path("archive/a.md", 100))

        assert set(self.store.objects) == {target.payload_key, target.sidecar_key}
        moved = await self.manager.read(target.payload_key)
        assert moved.original_path == "archive/a.md"
        assert moved.time_stamp == 100

    @pytest.mark.asyncio
    async def test_move_version_reports_partial_failure(self):
        await self.manager.store_version(self.version, b"data", self.sidecar)
        target = alias_codec.version_for("archive/a.md", 100)
        self.store.fail("remove", self.version.sidecar_key)

        with pytest.raises(PartialMoveFailure):
            await self.manager.move_version(self.version, target, SidecarMetadata.for_path("archive/a.md", 100))

        assert target.payload_key in self.store.objects
        assert target.sidecar_key in self.store.objects
        assert self.version.sidecar_key in self.store.objects
