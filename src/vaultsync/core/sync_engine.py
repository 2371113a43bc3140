"""Reconciliation engine: brings the vault and the bucket into agreement."""

import asyncio
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from . import alias as alias_codec
from .inventory import build_inventory, group_versions
from .models import (
    Inventory,
    OutcomeKind,
    PassReport,
    RemoteVersion,
    SidecarMetadata,
    SyncOutcome,
)
from .sidecar import SidecarManager
from ..config.settings import RemoteDeletePolicy
from ..database.models import SyncedFileResponse
from ..database.service import SyncStateService
from ..exceptions import (
    AliasCollision,
    LocalFileVanished,
    PartialMoveFailure,
    SidecarMissing,
    TransientIOError,
    VaultSyncError,
)
from ..storage.base import RemoteObjectStore
from ..utils.logging import get_logger, log_async_execution_time
from ..vault.filesystem import LocalFileRecord, LocalFileSystem, normalize_vault_path


class ReconciliationEngine:
    """Diffs local and remote inventories and applies the conflict policy.

    Passes (full syncs, dirty-path syncs, delete and move propagation) run
    one at a time. Inside a pass, aliases are processed concurrently up to
    ``max_concurrency``; a failure on one alias is recorded in the report and
    never stops the others.
    """

    def __init__(
        self,
        store: RemoteObjectStore,
        vault: LocalFileSystem,
        state: Optional[SyncStateService] = None,
        max_concurrency: int = 8,
        remote_delete_policy: RemoteDeletePolicy = RemoteDeletePolicy.REUPLOAD
    ):
        """Initialize the engine.

        Args:
            store: Remote object store holding the version chains
            vault: Local file tree
            state: Persistent sync state (pass history, last-known-synced set)
            max_concurrency: Maximum aliases processed at once
            remote_delete_policy: What to do with synced files that vanished remotely
        """
        self.store = store
        self.vault = vault
        self.state = state
        self.sidecars = SidecarManager(store)
        self.max_concurrency = max_concurrency
        self.remote_delete_policy = RemoteDeletePolicy(remote_delete_policy)
        self.logger = get_logger(self.__class__.__name__)

        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._pass_lock = asyncio.Lock()
        self._cancel = asyncio.Event()
        self._last_report: Optional[PassReport] = None

    @property
    def last_report(self) -> Optional[PassReport]:
        return self._last_report

    @property
    def is_running(self) -> bool:
        return self._pass_lock.locked()

    def cancel(self) -> None:
        """Ask the running pass to stop; aliases not yet started are skipped."""
        if self.is_running:
            self.logger.info("Cancellation requested")
            self._cancel.set()

    async def ensure_configured(self) -> None:
        """Raises ConfigurationError when the store cannot be used."""
        self.store.validate_configuration()

    async def snapshot(self) -> Inventory:
        """Take the local and remote inventories for one pass."""
        records, listing = await asyncio.gather(self.vault.list_files(), self.store.list())
        return build_inventory(records, listing)

    # Passes

    @log_async_execution_time
    async def full_sync(self, trigger: str = "manual") -> PassReport:
        """Reconcile every alias known on either side."""
        await self.ensure_configured()

        async with self._pass_lock:
            self._cancel.clear()
            report = PassReport(trigger=trigger)
            pass_id = self._start_pass(trigger)

            try:
                inventory = await self.snapshot()
            except Exception as e:
                self._fail_pass(pass_id, e)
                raise

            synced = self._synced_files()
            aliases = sorted(set(inventory.local) | set(inventory.chains))

            self.logger.info(
                "Starting full sync",
                trigger=trigger,
                local_files=len(inventory.local),
                remote_aliases=len(inventory.remote),
                orphans=len(inventory.orphans)
            )

            outcomes = await asyncio.gather(*[
                self._guarded(alias, self._path_hint(alias, inventory), self._reconcile_factory(alias, inventory, synced))
                for alias in aliases
            ])
            report.extend(outcomes)
            report.extend(self._unsyncable(inventory))

            return self._complete(report, pass_id)

    @log_async_execution_time
    async def sync_paths(self, paths: Iterable[str], trigger: str = "flush") -> PassReport:
        """Upload (or reconcile) a set of dirty local paths against a fresh listing."""
        await self.ensure_configured()

        wanted = sorted({normalize_vault_path(p) for p in paths})
        async with self._pass_lock:
            self._cancel.clear()
            report = PassReport(trigger=trigger)
            if not wanted:
                return self._complete(report, None)

            pass_id = self._start_pass(trigger)
            try:
                inventory = await self.snapshot()
            except Exception as e:
                self._fail_pass(pass_id, e)
                raise

            synced = self._synced_files()
            work = []
            for path in wanted:
                alias = alias_codec.encode(path)
                record = inventory.local.get(alias)

                if not alias:
                    report.add(SyncOutcome.skipped("", "empty alias", path=path))
                elif path in inventory.collisions.get(alias, ()):
                    report.add(self._collision_outcome(alias, path, record.path))
                elif record is None or record.path != path:
                    report.add(SyncOutcome.skipped(alias, "local file vanished", path=path))
                else:
                    work.append(self._guarded(
                        alias, path, self._local_factory(alias, record, inventory, synced)
                    ))

            report.extend(await asyncio.gather(*work))
            return self._complete(report, pass_id)

    async def propagate_delete(self, path: str) -> SyncOutcome:
        """Remove the whole remote chain of a locally deleted file."""
        await self.ensure_configured()
        path = normalize_vault_path(path)
        alias = alias_codec.encode(path)
        if not alias:
            return SyncOutcome.skipped("", "empty alias", path=path)

        async with self._pass_lock:
            holder = await self._other_holder(alias, exclude=path)
            if holder is not None:
                return self._collision_outcome(alias, path, holder)

            listing = await self.store.list(prefix=alias + alias_codec.TAG_SEPARATOR)
            chains, _ = group_versions(listing)
            versions = chains.get(alias, [])
            keys = [
                entry.key for entry in listing
                if entry.key.startswith(alias + alias_codec.TAG_SEPARATOR)
            ]
            if keys:
                await self.store.remove(keys)

            if self.state:
                self.state.forget(alias)

            self.logger.info("Propagated delete", path=path, alias=alias, versions=len(versions))
            return SyncOutcome(
                alias=alias,
                kind=OutcomeKind.DELETED,
                path=path,
                reason=f"{len(versions)} versions removed"
            )

    async def propagate_move(self, old_path: str, new_path: str) -> SyncOutcome:
        """Move every version of a renamed file to the new alias.

        Raises:
            PartialMoveFailure: If any version left an old key behind
        """
        await self.ensure_configured()
        old_path, new_path = normalize_vault_path(old_path), normalize_vault_path(new_path)
        old_alias, new_alias = alias_codec.encode(old_path), alias_codec.encode(new_path)
        if not new_alias:
            return SyncOutcome.skipped("", "empty alias", path=new_path)

        async with self._pass_lock:
            holder = await self._other_holder(new_alias, exclude=new_path)
            if holder is not None:
                return self._collision_outcome(new_alias, new_path, holder)
            if old_alias != new_alias:
                holder = await self._other_holder(old_alias, exclude=old_path)
                if holder is not None:
                    return self._collision_outcome(old_alias, old_path, holder)

            versions: List[RemoteVersion] = []
            if old_alias:
                listing = await self.store.list(prefix=old_alias + alias_codec.TAG_SEPARATOR)
                chains, _ = group_versions(listing)
                versions = chains.get(old_alias, [])

            if not versions:
                record = await self.vault.stat(new_path)
                if record is None:
                    return SyncOutcome.skipped(new_alias, "local file vanished", path=new_path)
                outcome = await self._upload(new_alias, record, OutcomeKind.UPLOADED)
                if self.state and old_alias and old_alias != new_alias:
                    self.state.forget(old_alias)
                return outcome

            extension = alias_codec.extension_of(new_path)
            failures: List[PartialMoveFailure] = []
            for version in versions:
                target = RemoteVersion(
                    alias=new_alias,
                    sequence_tag=version.sequence_tag,
                    payload_key=alias_codec.payload_key(new_alias, version.sequence_tag, extension),
                    extension=extension
                )
                sidecar = SidecarMetadata.for_path(new_path, version.sequence_tag)
                try:
                    await self.sidecars.move_version(version, target, sidecar)
                except PartialMoveFailure as e:
                    failures.append(e)

            if self.state:
                self.state.move(old_alias, new_alias, new_path)

            if failures:
                self.logger.error(
                    "Move left old keys behind",
                    old_path=old_path,
                    new_path=new_path,
                    failed=len(failures)
                )
                raise failures[0]

            self.logger.info("Propagated move", old_path=old_path, new_path=new_path, versions=len(versions))
            return SyncOutcome(
                alias=new_alias,
                kind=OutcomeKind.MOVED,
                path=new_path,
                reason=f"{len(versions)} versions moved from {old_path}",
                sequence_tag=versions[0].sequence_tag
            )

    # Per-alias decisions

    def _reconcile_factory(self, alias: str, inventory: Inventory, synced: Dict[str, SyncedFileResponse]):
        record = inventory.local.get(alias)
        if record is not None:
            return self._local_factory(alias, record, inventory, synced)
        head = inventory.remote.get(alias)
        if head is None:
            return lambda: self._missing_sidecar(inventory.unpaired(alias))
        return lambda: self._download(alias, head)

    def _local_factory(self, alias, record, inventory, synced):
        return lambda: self._reconcile_local(alias, record, inventory, synced)

    async def _reconcile_local(
        self,
        alias: str,
        record: LocalFileRecord,
        inventory: Inventory,
        synced: Dict[str, SyncedFileResponse]
    ) -> SyncOutcome:
        head = inventory.remote.get(alias)
        previous = synced.get(alias)

        if head is None:
            if (
                previous is not None
                and alias not in inventory.chains
                and self.remote_delete_policy == RemoteDeletePolicy.DELETE_LOCAL
                and record.modified_at <= previous.sequence_tag
            ):
                return await self._delete_local(alias, record)
            return await self._upload(alias, record, OutcomeKind.UPLOADED)

        if record.modified_at > head.sequence_tag:
            return await self._upload(alias, record, OutcomeKind.UPDATED)

        if record.modified_at < head.sequence_tag:
            if previous is not None and record.modified_at <= previous.sequence_tag:
                return await self._download(alias, head, path=record.path)
            return await self._diverge(alias, record, head)

        self._mark_synced(alias, record.path, head.sequence_tag)
        return SyncOutcome(alias=alias, kind=OutcomeKind.UNCHANGED, path=record.path, sequence_tag=head.sequence_tag)

    async def _upload(self, alias: str, record: LocalFileRecord, kind: OutcomeKind) -> SyncOutcome:
        data = await self.vault.read_bytes(record.path)
        tag = record.modified_at
        version = alias_codec.version_for(record.path, tag)

        await self.sidecars.store_version(version, data, SidecarMetadata.for_path(record.path, tag))
        self._mark_synced(alias, record.path, tag)

        self.logger.info("Uploaded version", path=record.path, payload_key=version.payload_key)
        return SyncOutcome(alias=alias, kind=kind, path=record.path, sequence_tag=tag)

    async def _download(self, alias: str, head: RemoteVersion, path: Optional[str] = None) -> SyncOutcome:
        """Write ``head`` to ``path``, or to the path its sidecar records."""
        if path is None:
            sidecar = await self.sidecars.read(head.payload_key)
            path = normalize_vault_path(sidecar.original_path)

            existing = await self.vault.stat(path)
            if existing is not None and existing.modified_at >= head.sequence_tag:
                return SyncOutcome.skipped(alias, f"local file {path} is not older than remote", path=path)

        data = await self.store.download(head.payload_key)
        await self.vault.write_bytes(path, data, modified_at=head.sequence_tag)
        self._mark_synced(alias, path, head.sequence_tag)

        self.logger.info("Downloaded version", path=path, payload_key=head.payload_key)
        return SyncOutcome(alias=alias, kind=OutcomeKind.DOWNLOADED, path=path, sequence_tag=head.sequence_tag)

    async def _missing_sidecar(self, version: RemoteVersion) -> SyncOutcome:
        raise SidecarMissing(version.payload_key)

    async def _diverge(
        self,
        alias: str,
        record: LocalFileRecord,
        head: RemoteVersion
    ) -> SyncOutcome:
        """Keep a local edit made since the last sync as a conflict copy and take the remote head."""
        data = await self.vault.read_bytes(record.path)
        local_tag = record.modified_at
        copy_path = alias_codec.conflict_path(record.path, local_tag)
        copy_version = alias_codec.version_for(copy_path, local_tag)

        await self.sidecars.store_version(copy_version, data, SidecarMetadata.for_path(copy_path, local_tag))
        await self.vault.write_bytes(copy_path, data, modified_at=local_tag)
        self._mark_synced(copy_version.alias, copy_path, local_tag)

        remote_data = await self.store.download(head.payload_key)
        await self.vault.write_bytes(record.path, remote_data, modified_at=head.sequence_tag)
        self._mark_synced(alias, record.path, head.sequence_tag)

        self.logger.warning(
            "Local copy diverged from remote",
            path=record.path,
            conflict_path=copy_path,
            local_tag=local_tag,
            remote_tag=head.sequence_tag
        )
        return SyncOutcome(
            alias=alias,
            kind=OutcomeKind.DIVERGED,
            path=record.path,
            reason=f"local copy kept as {copy_path}",
            sequence_tag=head.sequence_tag
        )

    async def _delete_local(self, alias: str, record: LocalFileRecord) -> SyncOutcome:
        await self.vault.delete(record.path)
        if self.state:
            self.state.forget(alias)

        self.logger.info("Deleted local file removed remotely", path=record.path)
        return SyncOutcome(alias=alias, kind=OutcomeKind.DELETED, path=record.path, reason="removed remotely")

    async def _guarded(
        self,
        alias: str,
        path: Optional[str],
        work: Callable[[], Awaitable[SyncOutcome]]
    ) -> SyncOutcome:
        """Run the work for one alias, turning any failure into a skipped outcome."""
        if self._cancel.is_set():
            return SyncOutcome.skipped(alias, "cancelled", path=path)

        async with self._semaphore:
            if self._cancel.is_set():
                return SyncOutcome.skipped(alias, "cancelled", path=path)

            try:
                return await work()

            except LocalFileVanished:
                return SyncOutcome.skipped(alias, "local file vanished", path=path)

            except SidecarMissing as e:
                self.logger.warning("Skipping version without sidecar", alias=alias, payload_key=e.payload_key)
                return SyncOutcome.skipped(alias, "sidecar missing", path=path, error=True)

            except TransientIOError as e:
                self.logger.warning("Transient failure, will retry next pass", alias=alias, error=str(e))
                return SyncOutcome.skipped(alias, str(e), path=path, error=True, retryable=True)

            except (VaultSyncError, OSError, ValueError) as e:
                self.logger.error("Failed to sync alias", alias=alias, path=path, error=str(e))
                return SyncOutcome.skipped(alias, str(e), path=path, error=True)

            except Exception as e:
                self.logger.exception("Unexpected error syncing alias", alias=alias, path=path)
                return SyncOutcome.skipped(alias, f"unexpected error: {e}", path=path, error=True)

    # Helpers

    @staticmethod
    def _path_hint(alias: str, inventory: Inventory) -> Optional[str]:
        record = inventory.local.get(alias)
        return record.path if record else None

    @staticmethod
    def _collision_outcome(alias: str, path: str, winner: str) -> SyncOutcome:
        reason = str(AliasCollision(alias, path, winner))
        return SyncOutcome.skipped(alias, reason, path=path, error=True)

    def _unsyncable(self, inventory: Inventory) -> List[SyncOutcome]:
        outcomes = [SyncOutcome.skipped("", "empty alias", path=path) for path in inventory.empty]
        for alias, losers in inventory.collisions.items():
            winner = inventory.local[alias].path
            for path in losers:
                self.logger.warning("Alias collision", alias=alias, path=path, winner=winner)
                outcomes.append(self._collision_outcome(alias, path, winner))
        return outcomes

    async def _other_holder(self, alias: str, exclude: str) -> Optional[str]:
        """First local path other than ``exclude`` that encodes to ``alias``."""
        for record in await self.vault.list_files():
            if record.path != exclude and alias_codec.encode(record.path) == alias:
                return record.path
        return None

    def _complete(self, report: PassReport, pass_id: Optional[int]) -> PassReport:
        report.cancelled = self._cancel.is_set()
        report.finish()
        self._cancel.clear()

        if pass_id is not None and self.state:
            self.state.finish_pass(pass_id, report)

        self._last_report = report
        self.logger.info(
            "Sync pass completed",
            trigger=report.trigger,
            summary=report.summary(),
            errors=len(report.failures),
            cancelled=report.cancelled,
            duration_seconds=report.duration_seconds
        )
        return report

    def _start_pass(self, trigger: str) -> Optional[int]:
        if not self.state:
            return None
        return self.state.start_pass(trigger)

    def _fail_pass(self, pass_id: Optional[int], error: Exception) -> None:
        self.logger.error("Sync pass aborted", error=str(error))
        if pass_id is not None and self.state:
            self.state.fail_pass(pass_id, str(error))

    def _synced_files(self) -> Dict[str, SyncedFileResponse]:
        if not self.state:
            return {}
        return self.state.get_synced_files()

    def _mark_synced(self, alias: str, path: str, sequence_tag: int) -> None:
        if self.state:
            self.state.mark_synced(alias, path, sequence_tag)
