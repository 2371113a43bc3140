"""Tests for the sync state database."""

from pathlib import Path

from vaultsync.core import OutcomeKind, PassReport, SyncOutcome
from vaultsync.database import DatabaseManager, PassStatus, default_database_url, init_database


class TestDatabaseManager:
    """Test connection management."""

    def test_default_url_lives_in_hidden_state_dir(self, tmp_path):
        url = default_database_url(str(tmp_path))

        assert url == f"sqlite:///{tmp_path.resolve() / '.vaultsync' / 'state.db'}"

    def test_create_tables_makes_directory(self, tmp_path):
        db_path = tmp_path / "nested" / "state.db"
        manager = DatabaseManager(f"sqlite:///{db_path}")

        manager.create_tables()

        assert Path(db_path).exists()
        assert manager.test_connection()
        manager.close()


class TestSyncStateService:
    """Test the synced set and pass history."""

    def test_mark_and_forget(self, state):
        state.mark_synced("a.md", "a.md", 10)
        state.mark_synced("a.md", "a.md", 20)

        assert set(state.get_synced_files()) == {"a.md"}
        assert state.get_synced_file("a.md").sequence_tag == 20

        assert state.forget("a.md") is True
        assert state.forget("a.md") is False
        assert state.get_synced_files() == {}

    def test_move(self, state):
        state.mark_synced("old.md", "old.md", 10)
        state.mark_synced("new.md", "new.md", 1)

        state.move("old.md", "new.md", "new.md")

        assert set(state.get_synced_files()) == {"new.md"}
        assert state.get_synced_file("new.md").sequence_tag == 10

    def test_move_unknown_alias_is_noop(self, state):
        state.move("nothing.md", "new.md", "new.md")

        assert state.get_synced_files() == {}

    def test_pass_history(self, state):
        pass_id = state.start_pass("manual")
        report = PassReport(trigger="manual")
        report.add(SyncOutcome(alias="a.md", kind=OutcomeKind.UPLOADED, path="a.md"))
        report.add(SyncOutcome(alias="b.md", kind=OutcomeKind.UPDATED, path="b.md"))
        report.add(SyncOutcome.skipped("c.md", "sidecar missing", error=True))
        report.finish()

        state.finish_pass(pass_id, report)

        [record] = state.recent_passes()
        assert record.status == PassStatus.COMPLETED_WITH_ERRORS.value
        assert record.uploaded == 2
        assert record.skipped == 1
        assert record.errors == 1
        assert record.completed_at is not None
        assert record.summary == "2 uploaded, 0 downloaded, 0 diverged, 1 skipped, 1 errors"

    def test_failed_pass(self, state):
        pass_id = state.start_pass("flush")

        state.fail_pass(pass_id, "listing failed")

        [record] = state.recent_passes()
        assert record.status == PassStatus.FAILED.value
        assert record.error_message == "listing failed"

    def test_recent_passes_newest_first(self, state):
        for trigger in ("startup", "flush", "manual"):
            state.finish_pass(state.start_pass(trigger), PassReport(trigger=trigger).finish())

        assert [p.trigger for p in state.recent_passes(limit=2)] == ["manual", "flush"]

    def test_init_database_in_memory(self):
        manager = init_database("sqlite:///:memory:")
        assert manager.test_connection()
        manager.close()
