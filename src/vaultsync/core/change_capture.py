"""Change capture: turns local file events into sync work."""

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Set, Union

from .models import PassReport
from ..exceptions import TransientIOError
from ..utils.logging import get_logger
from ..vault.events import ChangeEvent, FileDeleted, FileRenamed
from ..vault.filesystem import normalize_vault_path


@dataclass(frozen=True)
class DeleteOperation:
    """Remove the remote chain of a deleted file."""
    path: str


@dataclass(frozen=True)
class MoveOperation:
    """Move the remote chain of a renamed file."""
    old_path: str
    new_path: str


Operation = Union[DeleteOperation, MoveOperation]


class ChangeCapture:
    """Collects local changes between flushes.

    Creates and modifications only mark a path dirty; the periodic
    :meth:`flush` uploads each dirty path once. Deletes and renames are
    queued as remote operations and executed one at a time, in the order the
    events arrived.
    """

    def __init__(self, engine):
        """Initialize change capture.

        Args:
            engine: ReconciliationEngine used for uploads, deletes and moves
        """
        self.engine = engine
        self.logger = get_logger(self.__class__.__name__)

        self._dirty: Set[str] = set()
        self._lock = asyncio.Lock()
        self._events: asyncio.Queue = asyncio.Queue()
        self._operations: asyncio.Queue = asyncio.Queue()
        self._failed_operations: List[Operation] = []
        self._tasks: List[asyncio.Task] = []

        self.last_report: Optional[PassReport] = None

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    @property
    def pending(self) -> List[str]:
        """Dirty paths waiting for the next flush."""
        return sorted(self._dirty)

    @property
    def pending_operations(self) -> int:
        return self._operations.qsize() + len(self._failed_operations)

    async def mark_dirty(self, path: str) -> None:
        async with self._lock:
            self._dirty.add(normalize_vault_path(path))

    async def drain(self) -> List[str]:
        """Take every dirty path, leaving the set empty."""
        async with self._lock:
            paths, self._dirty = self._dirty, set()
        return sorted(paths)

    def submit(self, event: ChangeEvent) -> None:
        """Queue an event for the consumer task."""
        self._events.put_nowait(event)

    async def handle_event(self, event: ChangeEvent) -> None:
        """Apply one event to the dirty set and the operation queue."""
        path = normalize_vault_path(event.path)

        if isinstance(event, FileRenamed):
            old_path = normalize_vault_path(event.old_path)
            async with self._lock:
                if old_path in self._dirty:
                    self._dirty.discard(old_path)
                    self._dirty.add(path)
            self._operations.put_nowait(MoveOperation(old_path, path))

        elif isinstance(event, FileDeleted):
            async with self._lock:
                self._dirty.discard(path)
            self._operations.put_nowait(DeleteOperation(path))

        else:
            await self.mark_dirty(path)

    async def execute(self, operation: Operation):
        if isinstance(operation, MoveOperation):
            return await self.engine.propagate_move(operation.old_path, operation.new_path)
        return await self.engine.propagate_delete(operation.path)

    async def flush(self) -> Optional[PassReport]:
        """Upload every dirty path once.

        An empty dirty set returns None without touching the store. Paths that
        failed with a transient error are marked dirty again.
        """
        self._requeue_failed_operations()
        if self.running:
            await self._operations.join()

        paths = await self.drain()
        if not paths:
            return None

        try:
            report = await self.engine.sync_paths(paths, trigger="flush")
        except Exception:
            async with self._lock:
                self._dirty.update(paths)
            raise

        retry = [o.path for o in report.outcomes if o.retryable and o.path]
        if retry:
            async with self._lock:
                self._dirty.update(retry)
            self.logger.info("Paths will be retried on next flush", count=len(retry))

        self.last_report = report
        return report

    def _requeue_failed_operations(self) -> None:
        failed, self._failed_operations = self._failed_operations, []
        for operation in failed:
            self._operations.put_nowait(operation)

    async def _forward(self, events: AsyncIterator[ChangeEvent]) -> None:
        async for event in events:
            self._events.put_nowait(event)

    async def _event_worker(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self.handle_event(event)
            except Exception as e:
                self.logger.error("Failed to handle change event", event=repr(event), error=str(e))
            finally:
                self._events.task_done()

    async def _operation_worker(self) -> None:
        while True:
            operation = await self._operations.get()
            try:
                outcome = await self.execute(operation)
                self.logger.info(
                    "Remote operation completed",
                    operation=type(operation).__name__,
                    outcome=outcome.kind.value,
                    reason=outcome.reason
                )
            except TransientIOError as e:
                self.logger.warning("Remote operation failed, will retry", operation=repr(operation), error=str(e))
                self._failed_operations.append(operation)
            except Exception as e:
                self.logger.error("Remote operation failed", operation=repr(operation), error=str(e))
            finally:
                self._operations.task_done()

    def start(self, events: Optional[AsyncIterator[ChangeEvent]] = None) -> None:
        """Start the consumer tasks, optionally reading from a subscription."""
        if self.running:
            return

        self._tasks = [
            asyncio.create_task(self._event_worker()),
            asyncio.create_task(self._operation_worker()),
        ]
        if events is not None:
            self._tasks.append(asyncio.create_task(self._forward(events)))
        self.logger.info("Change capture started")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self.logger.info("Change capture stopped")

    async def wait_idle(self) -> None:
        """Wait until queued events and operations have been processed."""
        await self._events.join()
        await self._operations.join()
