"""Tests for change capture."""

import asyncio

import pytest

from conftest import T0
from vaultsync.core import ChangeCapture, DeleteOperation, MoveOperation, OutcomeKind
from vaultsync.exceptions import TransientIOError
from vaultsync.vault import FileCreated, FileDeleted, FileModified, FileRenamed


class TestDirtySet:
    """Test dirty-path bookkeeping."""

    @pytest.mark.asyncio
    async def test_creates_and_modifications_are_deduplicated(self, engine):
        capture = ChangeCapture(engine)

        await capture.handle_event(FileCreated("notes/a.md"))
        await capture.handle_event(FileModified("notes/a.md"))
        await capture.handle_event(FileModified("./notes/b.md"))

        assert capture.pending == ["notes/a.md", "notes/b.md"]

    @pytest.mark.asyncio
    async def test_delete_drops_dirty_mark_and_queues_operation(self, engine):
        capture = ChangeCapture(engine)
        await capture.mark_dirty("a.md")

        await capture.handle_event(FileDeleted("a.md"))

        assert capture.pending == []
        assert capture.pending_operations == 1
        assert capture._operations.get_nowait() == DeleteOperation("a.md")

    @pytest.mark.asyncio
    async def test_rename_moves_dirty_mark(self, engine):
        capture = ChangeCapture(engine)
        await capture.mark_dirty("old.md")

        await capture.handle_event(FileRenamed("new.md", old_path="old.md"))

        assert capture.pending == ["new.md"]
        assert capture._operations.get_nowait() == MoveOperation("old.md", "new.md")

    @pytest.mark.asyncio
    async def test_rename_of_clean_file_leaves_set_alone(self, engine):
        capture = ChangeCapture(engine)

        await capture.handle_event(FileRenamed("new.md", old_path="old.md"))

        assert capture.pending == []

    @pytest.mark.asyncio
    async def test_concurrent_marks_and_drain(self, engine):
        capture = ChangeCapture(engine)

        async def mark(i):
            await capture.mark_dirty(f"n{i}.md")

        await asyncio.gather(*(mark(i) for i in range(50)))
        drained = await capture.drain()

        assert len(drained) == 50
        assert capture.pending == []


class TestFlush:
    """Test periodic flushes."""

    @pytest.mark.asyncio
    async def test_empty_flush_makes_no_calls(self, engine, store):
        capture = ChangeCapture(engine)

        assert await capture.flush() is None
        assert store.operations == []

    @pytest.mark.asyncio
    async def test_one_upload_per_dirty_path(self, engine, store, make_file):
        make_file("a.md", b"a", T0)
        capture = ChangeCapture(engine)
        for _ in range(3):
            await capture.handle_event(FileModified("a.md"))

        report = await capture.flush()

        assert [o.kind for o in report.outcomes] == [OutcomeKind.UPLOADED]
        assert store.count("upload") == 2
        assert capture.pending == []

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried_next_flush(self, engine, store, make_file):
        make_file("a.md", b"a", T0)
        capture = ChangeCapture(engine)
        await capture.mark_dirty("a.md")
        store.fail("upload", f"a.md__{T0}.md")

        report = await capture.flush()

        assert report.failures
        assert capture.pending == ["a.md"]

        store.clear_failures()
        report = await capture.flush()

        assert report.outcomes[0].kind == OutcomeKind.UPLOADED
        assert capture.pending == []

    @pytest.mark.asyncio
    async def test_failed_sidecar_write_is_repaired_next_flush(self, engine, store, make_file):
        make_file("a.md", b"a", T0)
        capture = ChangeCapture(engine)
        await capture.mark_dirty("a.md")
        sidecar_key = f"a.md__{T0}.md.meta.json"
        store.fail("upload", sidecar_key)

        report = await capture.flush()

        assert report.outcomes[0].retryable
        assert capture.pending == ["a.md"]
        assert sidecar_key not in store.objects

        store.clear_failures()
        report = await capture.flush()

        assert report.outcomes[0].kind == OutcomeKind.UPLOADED
        assert sidecar_key in store.objects
        assert capture.pending == []

    @pytest.mark.asyncio
    async def test_pass_failure_restores_dirty_set(self, engine, store, make_file):
        make_file("a.md", b"a", T0)
        capture = ChangeCapture(engine)
        await capture.mark_dirty("a.md")
        store.fail("list", "")

        with pytest.raises(TransientIOError):
            await capture.flush()

        assert capture.pending == ["a.md"]

    @pytest.mark.asyncio
    async def test_vanished_file_is_dropped(self, engine):
        capture = ChangeCapture(engine)
        await capture.mark_dirty("gone.md")

        report = await capture.flush()

        assert report.outcomes[0].reason == "local file vanished"
        assert capture.pending == []


class TestOperations:
    """Test delete and rename propagation through the workers."""

    @pytest.mark.asyncio
    async def test_delete_event_removes_remote_chain(self, engine, store, make_file, vault_dir):
        make_file("a.md", b"a", T0)
        await engine.full_sync()
        (vault_dir / "a.md").unlink()
        capture = ChangeCapture(engine)
        capture.start()

        try:
            capture.submit(FileDeleted("a.md"))
            await capture.wait_idle()
        finally:
            await capture.stop()

        assert store.objects == {}

    @pytest.mark.asyncio
    async def test_rename_event_moves_chain(self, engine, store, vault, make_file):
        make_file("old.md", b"body", T0)
        await engine.full_sync()
        await vault.rename("old.md", "new.md")
        capture = ChangeCapture(engine)
        capture.start()

        try:
            capture.submit(FileRenamed("new.md", old_path="old.md"))
            await capture.wait_idle()
        finally:
            await capture.stop()

        assert sorted(store.objects) == [f"new.md__{T0}.md", f"new.md__{T0}.md.meta.json"]
        report = await engine.full_sync()
        assert [o.kind for o in report.outcomes] == [OutcomeKind.UNCHANGED]

    @pytest.mark.asyncio
    async def test_failed_operation_is_retried_on_flush(self, engine, store, make_file, vault_dir):
        make_file("a.md", b"a", T0)
        await engine.full_sync()
        (vault_dir / "a.md").unlink()
        store.fail("remove", f"a.md__{T0}.md")
        capture = ChangeCapture(engine)
        capture.start()

        try:
            capture.submit(FileDeleted("a.md"))
            await capture.wait_idle()
            assert capture.pending_operations == 1

            store.clear_failures()
            await capture.flush()
        finally:
            await capture.stop()

        assert store.objects == {}
        assert capture.pending_operations == 0

    @pytest.mark.asyncio
    async def test_subscription_feeds_the_queue(self, engine, store, vault, make_file):
        make_file("old.md", b"body", T0)
        await engine.full_sync()
        capture = ChangeCapture(engine)
        capture.start(vault.subscribe())

        try:
            await vault.rename("old.md", "new.md")
            for _ in range(100):
                if f"new.md__{T0}.md.meta.json" in store.objects and capture.pending_operations == 0:
                    break
                await asyncio.sleep(0.01)
            await capture.wait_idle()
        finally:
            await capture.stop()

        assert f"new.md__{T0}.md" in store.objects
        assert f"old.md__{T0}.md" not in store.objects
