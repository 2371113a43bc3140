"""In-process object store used for tests and dry runs."""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from .base import DEFAULT_CONTENT_TYPE, ObjectInfo, RemoteObjectStore
from ..exceptions import ObjectNotFound, TransientIOError


class MemoryObjectStore(RemoteObjectStore):
    """Dict-backed store with the same listing order as Supabase (by key).

    ``fail`` injects an error for one operation on one key so per-item failure
    handling can be exercised without a network.
    """

    def __init__(self, bucket: str = "memory", **kwargs):
        super().__init__(bucket=bucket, **kwargs)
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.updated: Dict[str, datetime] = {}
        self.operations: List[Tuple[str, str]] = []
        self._failures: Dict[Tuple[str, str], Exception] = {}

    def fail(self, operation: str, key: str, error: Optional[Exception] = None) -> None:
        """Make ``operation`` ("upload", "download", "remove", "list") raise for ``key``."""
        self._failures[(operation, key)] = error or TransientIOError(
            f"injected {operation} failure", key=key
        )

    def clear_failures(self) -> None:
        self._failures.clear()

    def count(self, operation: str) -> int:
        """Number of recorded calls to ``operation``."""
        return sum(1 for op, _ in self.operations if op == operation)

    def _check(self, operation: str, key: str) -> None:
        error = self._failures.get((operation, key))
        if error is not None:
            raise error

    async def _list_page(self, prefix: str, limit: int, offset: int) -> Tuple[List[ObjectInfo], int]:
        self._check("list", prefix)
        self.operations.append(("list", prefix))
        keys = sorted(k for k in self.objects if k.startswith(prefix))
        page = [
            ObjectInfo(key=k, size=len(self.objects[k]), updated_at=self.updated[k])
            for k in keys[offset:offset + limit]
        ]
        return page, len(page)

    async def upload(
        self,
        key: str,
        data: bytes,
        content_type: str = DEFAULT_CONTENT_TYPE,
        overwrite: bool = True
    ) -> None:
        self._check("upload", key)
        if not overwrite and key in self.objects:
            raise FileExistsError(key)
        self.operations.append(("upload", key))
        self.objects[key] = bytes(data)
        self.content_types[key] = content_type
        self.updated[key] = datetime.now(timezone.utc)

    async def download(self, key: str) -> bytes:
        self._check("download", key)
        self.operations.append(("download", key))
        try:
            return self.objects[key]
        except KeyError:
            raise ObjectNotFound(key)

    async def remove(self, keys: List[str]) -> None:
        for key in keys:
            self._check("remove", key)
        for key in keys:
            self.operations.append(("remove", key))
            self.objects.pop(key, None)
            self.content_types.pop(key, None)
            self.updated.pop(key, None)
