"""Base remote object store interface and common functionality."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from ..exceptions import ConfigurationError, PartialMoveFailure, TransientIOError
from ..utils.logging import get_logger


T = TypeVar("T")

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class ObjectInfo:
    """One entry of a remote listing."""

    key: str
    size: Optional[int] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "size": self.size,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None
        }


class RemoteObjectStore(ABC):
    """Abstract base class for flat-namespace object stores.

    Keys are opaque strings; values are bytes. Every network call made by a
    backend goes through :meth:`_with_timeout` so a hung request surfaces as
    :class:`TransientIOError` for that one key.
    """

    def __init__(
        self,
        bucket: str,
        timeout_seconds: float = 30.0,
        list_page_size: int = 1000,
        **kwargs
    ):
        """Initialize the store.

        Args:
            bucket: Bucket (or namespace) holding the vault objects
            timeout_seconds: Bound applied to every single remote call
            list_page_size: Page size used when paginating listings
            **kwargs: Backend-specific parameters
        """
        self.bucket = bucket
        self.timeout_seconds = timeout_seconds
        self.list_page_size = list_page_size
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    async def _list_page(self, prefix: str, limit: int, offset: int) -> Tuple[List[ObjectInfo], int]:
        """Return one page of keys starting with ``prefix``, ordered by key.

        The second item is the number of rows the backend returned before any
        client-side filtering; pagination advances by it.
        """
        pass

    @abstractmethod
    async def upload(
        self,
        key: str,
        data: bytes,
        content_type: str = DEFAULT_CONTENT_TYPE,
        overwrite: bool = True
    ) -> None:
        """Store ``data`` under ``key``; with ``overwrite`` an existing key is replaced."""
        pass

    @abstractmethod
    async def download(self, key: str) -> bytes:
        """Fetch the bytes stored under ``key``.

        Raises:
            ObjectNotFound: If the key does not exist
        """
        pass

    @abstractmethod
    async def remove(self, keys: List[str]) -> None:
        """Delete every key in ``keys``; missing keys are ignored."""
        pass

    async def list(self, prefix: str = "", limit: Optional[int] = None) -> List[ObjectInfo]:
        """List keys starting with ``prefix``, paginating until exhausted.

        Args:
            prefix: Key prefix filter
            limit: Stop after this many entries (None = everything)

        Returns:
            Entries in the order the backend reported them
        """
        entries: List[ObjectInfo] = []
        offset = 0

        while True:
            page_size = self.list_page_size
            if limit is not None:
                page_size = min(page_size, limit - len(entries))
                if page_size <= 0:
                    break

            page, fetched = await self._list_page(prefix, page_size, offset)
            entries.extend(page)
            offset += fetched

            if fetched < page_size:
                break

        self.logger.debug("Listed remote objects", prefix=prefix, count=len(entries))
        return entries

    async def move(self, old_key: str, new_key: str) -> None:
        """Move an object, emulated as download + upload + remove.

        Raises:
            PartialMoveFailure: If the copy landed but the source could not be removed
        """
        data = await self.download(old_key)
        await self.upload(new_key, data, overwrite=True)

        try:
            await self.remove([old_key])
        except Exception as e:
            self.logger.error(
                "Move left the source object behind",
                old_key=old_key,
                new_key=new_key,
                error=str(e)
            )
            raise PartialMoveFailure(old_key, new_key, e)

    def validate_configuration(self) -> None:
        """Raise ConfigurationError if the store cannot be used at all."""
        if not self.bucket:
            raise ConfigurationError("A storage bucket must be configured")

    async def health_check(self) -> bool:
        """Check if the store is reachable.

        Returns:
            True if a one-entry listing succeeds, False otherwise
        """
        try:
            await self.list(limit=1)
            self.logger.info("Store health check passed", store=self.__class__.__name__)
            return True

        except Exception as e:
            self.logger.error(
                "Store health check failed",
                store=self.__class__.__name__,
                error=str(e)
            )
            return False

    async def close(self) -> None:
        """Release any connection held by the backend."""
        return None

    def get_store_info(self) -> Dict[str, Any]:
        """Describe this store for status output."""
        return {
            "store_type": self.__class__.__name__,
            "bucket": self.bucket,
            "timeout_seconds": self.timeout_seconds
        }

    async def _with_timeout(self, operation: str, key: Optional[str], call: Callable[[], Awaitable[T]]) -> T:
        """Run one remote call under the configured timeout."""
        try:
            return await asyncio.wait_for(call(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            self.logger.warning(
                "Remote call timed out",
                operation=operation,
                key=key,
                timeout_seconds=self.timeout_seconds
            )
            raise TransientIOError(
                f"{operation} timed out after {self.timeout_seconds}s", key=key
            )
