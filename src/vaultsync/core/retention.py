"""Version retention (garbage collection of old versions)."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .inventory import group_versions
from .models import RemoteVersion
from .sidecar import SidecarManager
from ..storage.base import ObjectInfo, RemoteObjectStore
from ..utils.logging import get_logger, log_async_execution_time


@dataclass
class RetentionReport:
    """Result of one retention run."""

    aliases_scanned: int = 0
    versions_kept: int = 0
    deleted: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    def summary(self) -> str:
        text = (
            f"{self.aliases_scanned} aliases scanned, {self.versions_kept} versions kept, "
            f"{len(self.deleted)} versions deleted"
        )
        if self.failures:
            text += f", {len(self.failures)} errors"
        return text

    def to_dict(self) -> Dict[str, object]:
        return {
            "aliases_scanned": self.aliases_scanned,
            "versions_kept": self.versions_kept,
            "deleted": list(self.deleted),
            "failures": dict(self.failures)
        }


class VersionRetention:
    """Keeps the ``retention_count`` newest versions of every alias."""

    def __init__(self, store: RemoteObjectStore, retention_count: int = 3):
        if retention_count < 1:
            raise ValueError("retention_count must be at least 1")
        self.store = store
        self.retention_count = retention_count
        self.sidecars = SidecarManager(store)
        self.logger = get_logger(self.__class__.__name__)

    def plan(self, listing: List[ObjectInfo], keep: Optional[int] = None) -> Dict[str, List[RemoteVersion]]:
        """Versions to delete, by alias. Sidecar entries are not counted as versions."""
        keep = keep or self.retention_count
        chains, _ = group_versions(listing)
        return {
            alias: versions[keep:]
            for alias, versions in chains.items()
            if len(versions) > keep
        }

    @log_async_execution_time
    async def run(self, listing: Optional[List[ObjectInfo]] = None, keep: Optional[int] = None) -> RetentionReport:
        """Delete all but the newest versions of every alias.

        A removal failure is logged and recorded in the report; the remaining
        versions are still processed.
        """
        keep = keep or self.retention_count
        if listing is None:
            listing = await self.store.list()

        chains, _ = group_versions(listing)
        report = RetentionReport(
            aliases_scanned=len(chains),
            versions_kept=sum(min(len(versions), keep) for versions in chains.values())
        )

        for alias, doomed in self.plan(listing, keep).items():
            for version in doomed:
                try:
                    await self.sidecars.remove_version(version)
                    report.deleted.append(version.payload_key)
                except Exception as e:
                    self.logger.error(
                        "Failed to delete old version",
                        alias=alias,
                        payload_key=version.payload_key,
                        error=str(e)
                    )
                    report.failures[version.payload_key] = str(e)

        self.logger.info(
            "Retention run completed",
            aliases=report.aliases_scanned,
            deleted=len(report.deleted),
            errors=len(report.failures)
        )
        return report
