"""Local vault file system and change watcher."""

import asyncio
import os
import tempfile
import unicodedata
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import AsyncIterator, Dict, List, Optional, Set, Tuple

from .events import ChangeEvent, FileCreated, FileDeleted, FileModified, FileRenamed
from ..exceptions import LocalFileVanished
from ..utils.logging import get_logger


@dataclass(frozen=True)
class LocalFileRecord:
    """Snapshot of one vault file. ``modified_at`` is milliseconds since the epoch."""

    path: str
    modified_at: int
    size: Optional[int] = None


class LocalFileSystem(ABC):
    """Primitives the sync engine needs from the local tree."""

    @abstractmethod
    async def list_files(self) -> List[LocalFileRecord]:
        """Enumerate every syncable file with its modification time."""
        pass

    @abstractmethod
    async def stat(self, path: str) -> Optional[LocalFileRecord]:
        """Return the record for ``path`` or None if it does not exist."""
        pass

    @abstractmethod
    async def read_bytes(self, path: str) -> bytes:
        """Read a whole file.

        Raises:
            LocalFileVanished: If the file no longer exists
        """
        pass

    @abstractmethod
    async def write_bytes(self, path: str, data: bytes, modified_at: Optional[int] = None) -> LocalFileRecord:
        """Create or overwrite a file, optionally pinning its mtime (ms)."""
        pass

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """Delete a file; returns False if it was already gone."""
        pass

    @abstractmethod
    async def rename(self, old_path: str, new_path: str) -> None:
        """Move a file within the vault."""
        pass

    @abstractmethod
    def subscribe(self) -> AsyncIterator[ChangeEvent]:
        """Return an async iterator of change events."""
        pass


def normalize_vault_path(path: str) -> str:
    """Vault-relative POSIX path in NFC form, without leading ./ or slashes."""
    path = unicodedata.normalize("NFC", path.replace("\\", "/"))
    parts = [p for p in PurePosixPath(path).parts if p not in ("", ".", "/")]
    return "/".join(parts)


def _mtime_ms(st: os.stat_result) -> int:
    return st.st_mtime_ns // 1_000_000


class VaultFileSystem(LocalFileSystem):
    """A directory on disk.

    Hidden entries (any path component starting with ".") are not part of the
    vault, which keeps the state database and editor metadata out of sync.

    Changes are detected by polling: :meth:`poll_changes` diffs a fresh scan
    against the last known snapshot. Writes, deletes and renames made through
    this class update the snapshot, so the engine's own writes are not
    reported back as local changes.
    """

    def __init__(self, root: str):
        self.root = Path(root).expanduser().resolve()
        self.logger = get_logger(self.__class__.__name__)

        self._known: Dict[str, Tuple[int, int]] = {}
        self._primed = False
        self._snapshot_lock = asyncio.Lock()
        self._subscribers: Set[asyncio.Queue] = set()
        self._watch_task: Optional[asyncio.Task] = None

    def _resolve(self, path: str) -> Path:
        rel = normalize_vault_path(path)
        if not rel or ".." in PurePosixPath(rel).parts:
            raise ValueError(f"Path escapes the vault: {path!r}")
        return self.root / rel

    @staticmethod
    def _is_hidden(rel: str) -> bool:
        return any(part.startswith(".") for part in PurePosixPath(rel).parts)

    def _scan(self) -> Dict[str, Tuple[int, int]]:
        found: Dict[str, Tuple[int, int]] = {}
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            for name in filenames:
                if name.startswith("."):
                    continue
                full = os.path.join(dirpath, name)
                try:
                    st = os.stat(full)
                except FileNotFoundError:
                    continue
                rel = normalize_vault_path(os.path.relpath(full, self.root))
                found[rel] = (_mtime_ms(st), st.st_size)
        return found

    async def list_files(self) -> List[LocalFileRecord]:
        found = await asyncio.to_thread(self._scan)
        return [
            LocalFileRecord(path=path, modified_at=mtime, size=size)
            for path, (mtime, size) in sorted(found.items())
        ]

    async def stat(self, path: str) -> Optional[LocalFileRecord]:
        target = self._resolve(path)
        try:
            st = await asyncio.to_thread(os.stat, target)
        except FileNotFoundError:
            return None
        if not target.is_file():
            return None
        return LocalFileRecord(path=normalize_vault_path(path), modified_at=_mtime_ms(st), size=st.st_size)

    async def read_bytes(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except (FileNotFoundError, IsADirectoryError):
            raise LocalFileVanished(path)

    def _write(self, target: Path, data: bytes, modified_at: Optional[int]) -> os.stat_result:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".vaultsync-", dir=target.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        if modified_at is not None:
            os.utime(target, ns=(modified_at * 1_000_000, modified_at * 1_000_000))
        return os.stat(target)

    async def write_bytes(self, path: str, data: bytes, modified_at: Optional[int] = None) -> LocalFileRecord:
        rel = normalize_vault_path(path)
        target = self._resolve(rel)
        async with self._snapshot_lock:
            st = await asyncio.to_thread(self._write, target, data, modified_at)
            self._known[rel] = (_mtime_ms(st), st.st_size)

        self.logger.debug("Wrote vault file", path=rel, size=len(data), modified_at=modified_at)
        return LocalFileRecord(path=rel, modified_at=_mtime_ms(st), size=st.st_size)

    async def delete(self, path: str) -> bool:
        rel = normalize_vault_path(path)
        target = self._resolve(rel)
        async with self._snapshot_lock:
            self._known.pop(rel, None)
            try:
                await asyncio.to_thread(target.unlink)
            except FileNotFoundError:
                return False

        self.logger.info("Deleted vault file", path=rel)
        return True

    async def rename(self, old_path: str, new_path: str) -> None:
        old_rel, new_rel = normalize_vault_path(old_path), normalize_vault_path(new_path)
        source, target = self._resolve(old_rel), self._resolve(new_rel)

        def _move():
            if not source.is_file():
                raise LocalFileVanished(old_rel)
            target.parent.mkdir(parents=True, exist_ok=True)
            os.replace(source, target)
            return os.stat(target)

        async with self._snapshot_lock:
            st = await asyncio.to_thread(_move)
            self._known.pop(old_rel, None)
            self._known[new_rel] = (_mtime_ms(st), st.st_size)

        self.logger.info("Renamed vault file", old_path=old_rel, new_path=new_rel)
        self._publish([FileRenamed(new_rel, old_path=old_rel)])

    async def prime(self) -> None:
        """Take the baseline snapshot without reporting anything."""
        async with self._snapshot_lock:
            self._known = await asyncio.to_thread(self._scan)
            self._primed = True

    async def poll_changes(self) -> List[ChangeEvent]:
        """Diff the tree against the last snapshot and publish the changes.

        A path that vanished and a new path with identical size and mtime in
        the same poll are reported as one rename.
        """
        if not self._primed:
            await self.prime()
            return []

        async with self._snapshot_lock:
            current = await asyncio.to_thread(self._scan)
            previous = self._known
            self._known = current

        vanished = {p: previous[p] for p in previous.keys() - current.keys()}
        appeared = {p: current[p] for p in current.keys() - previous.keys()}

        events: List[ChangeEvent] = []

        by_signature: Dict[Tuple[int, int], List[str]] = {}
        for path, signature in vanished.items():
            by_signature.setdefault(signature, []).append(path)

        for path in sorted(appeared):
            candidates = by_signature.get(appeared[path])
            if candidates and len(candidates) == 1:
                old = candidates.pop()
                del vanished[old]
                events.append(FileRenamed(path, old_path=old))
            else:
                events.append(FileCreated(path))

        events.extend(FileDeleted(path) for path in sorted(vanished))
        events.extend(
            FileModified(path)
            for path in sorted(current.keys() & previous.keys())
            if current[path] != previous[path]
        )

        if events:
            self.logger.debug("Detected local changes", count=len(events))
            self._publish(events)
        return events

    def _publish(self, events: List[ChangeEvent]) -> None:
        for queue in self._subscribers:
            for event in events:
                queue.put_nowait(event)

    def subscribe(self) -> AsyncIterator[ChangeEvent]:
        # Registered immediately so nothing published before the first
        # iteration is lost.
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.add(queue)
        return self._drain(queue)

    async def _drain(self, queue: asyncio.Queue) -> AsyncIterator[ChangeEvent]:
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers.discard(queue)

    async def _watch_loop(self, interval: float) -> None:
        if not self._primed:
            await self.prime()
        while True:
            await asyncio.sleep(interval)
            try:
                await self.poll_changes()
            except OSError as e:
                self.logger.warning("Vault scan failed", error=str(e))

    def start_watching(self, interval: float = 2.0) -> None:
        """Poll the vault for changes every ``interval`` seconds."""
        if self._watch_task is None or self._watch_task.done():
            self._watch_task = asyncio.create_task(self._watch_loop(interval))
            self.logger.info("Watching vault", root=str(self.root), interval=interval)

    async def stop_watching(self) -> None:
        if self._watch_task is not None:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            self._watch_task = None
