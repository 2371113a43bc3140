"""High-level sync state service."""

from contextlib import contextmanager
from typing import TYPE_CHECKING, Dict, List, Optional

from .database import DatabaseManager
from .models import (
    PassStatus,
    SyncedFileModel,
    SyncedFileResponse,
    SyncPassModel,
    SyncPassResponse,
    utcnow,
)
from ..utils.logging import get_logger, log_execution_time

if TYPE_CHECKING:
    from ..core.models import PassReport


logger = get_logger("database.service")


class SyncStateService:
    """Persists the last-known-synced set and the pass history."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    @contextmanager
    def transaction(self):
        """Context manager for database transactions."""
        with self.db_manager.session_scope() as session:
            yield session

    # Synced files

    @log_execution_time
    def get_synced_files(self) -> Dict[str, SyncedFileResponse]:
        """Last-known-synced state by alias."""
        with self.transaction() as session:
            return {
                row.alias: SyncedFileResponse.model_validate(row)
                for row in session.query(SyncedFileModel).all()
            }

    def get_synced_file(self, alias: str) -> Optional[SyncedFileResponse]:
        with self.transaction() as session:
            row = session.get(SyncedFileModel, alias)
            return SyncedFileResponse.model_validate(row) if row else None

    def mark_synced(self, alias: str, path: str, sequence_tag: int) -> None:
        """Record (or refresh) an alias as synced at ``sequence_tag``."""
        with self.transaction() as session:
            row = session.get(SyncedFileModel, alias)
            if row is None:
                session.add(SyncedFileModel(alias=alias, path=path, sequence_tag=sequence_tag))
            elif row.path != path or row.sequence_tag != sequence_tag:
                row.path = path
                row.sequence_tag = sequence_tag
                row.synced_at = utcnow()

    def forget(self, alias: str) -> bool:
        """Drop an alias from the synced set; returns False if it was not known."""
        with self.transaction() as session:
            deleted = session.query(SyncedFileModel).filter(SyncedFileModel.alias == alias).delete()
            return deleted > 0

    def move(self, old_alias: str, new_alias: str, new_path: str) -> None:
        """Carry the synced state of a renamed file over to its new alias."""
        with self.transaction() as session:
            row = session.get(SyncedFileModel, old_alias)
            if row is None:
                return
            tag = row.sequence_tag
            if old_alias != new_alias:
                session.delete(row)
                session.flush()
                existing = session.get(SyncedFileModel, new_alias)
                if existing is not None:
                    session.delete(existing)
                    session.flush()
                session.add(SyncedFileModel(alias=new_alias, path=new_path, sequence_tag=tag))
            else:
                row.path = new_path

    # Pass history

    def start_pass(self, trigger: str) -> int:
        """Record the start of a pass and return its id."""
        with self.transaction() as session:
            record = SyncPassModel(trigger=trigger, status=PassStatus.IN_PROGRESS.value)
            session.add(record)
            session.flush()
            return record.id

    def finish_pass(self, pass_id: int, report: "PassReport") -> None:
        """Store the outcome counts of a finished pass."""
        counts = report.counts()

        if report.cancelled:
            status = PassStatus.CANCELLED
        elif report.failures:
            status = PassStatus.COMPLETED_WITH_ERRORS
        else:
            status = PassStatus.COMPLETED

        with self.transaction() as session:
            record = session.get(SyncPassModel, pass_id)
            if record is None:
                logger.warning("Unknown pass id", pass_id=pass_id)
                return
            record.completed_at = utcnow()
            record.status = status.value
            record.uploaded = counts.get("uploaded", 0) + counts.get("updated", 0)
            record.downloaded = counts.get("downloaded", 0)
            record.diverged = counts.get("diverged", 0)
            record.deleted = counts.get("deleted", 0)
            record.skipped = counts.get("skipped", 0)
            record.errors = len(report.failures)
            record.cancelled = report.cancelled
            record.summary = report.summary()

    def fail_pass(self, pass_id: int, error_message: str) -> None:
        """Mark a pass that aborted before producing outcomes."""
        with self.transaction() as session:
            record = session.get(SyncPassModel, pass_id)
            if record is None:
                return
            record.completed_at = utcnow()
            record.status = PassStatus.FAILED.value
            record.error_message = error_message

    def recent_passes(self, limit: int = 10) -> List[SyncPassResponse]:
        with self.transaction() as session:
            rows = (
                session.query(SyncPassModel)
                .order_by(SyncPassModel.id.desc())
                .limit(limit)
                .all()
            )
            return [SyncPassResponse.model_validate(row) for row in rows]
