"""Supabase Storage backend."""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx
from supabase import create_client, Client
from storage3.exceptions import StorageApiError

from .base import DEFAULT_CONTENT_TYPE, ObjectInfo, RemoteObjectStore
from ..exceptions import ConfigurationError, ObjectNotFound, TransientIOError


class SupabaseObjectStore(RemoteObjectStore):
    """Object store over one Supabase Storage bucket.

    The supabase client is synchronous, so every call runs in a worker thread.
    A single client is created on first use and kept for the store's lifetime.
    """

    def __init__(self, bucket: str, supabase_url: str, supabase_key: str, **kwargs):
        """Initialize the store.

        Args:
            bucket: Storage bucket name
            supabase_url: Project URL, e.g. https://<ref>.supabase.co
            supabase_key: Anon or service role key
            **kwargs: Passed to RemoteObjectStore (timeouts, page size)
        """
        super().__init__(bucket=bucket, **kwargs)
        self.supabase_url = supabase_url
        self.supabase_key = supabase_key
        self._client: Optional[Client] = None

    @property
    def client(self) -> Client:
        """Lazily created, cached Supabase client."""
        if self._client is None:
            if not self.supabase_url or not self.supabase_key:
                raise ConfigurationError("Supabase URL and key must be configured")
            try:
                self._client = create_client(self.supabase_url, self.supabase_key)
            except Exception as e:
                raise ConfigurationError(f"Failed to create Supabase client: {e}")
            self.logger.info("Supabase client created", bucket=self.bucket)
        return self._client

    def validate_configuration(self) -> None:
        super().validate_configuration()
        self.client  # creates and caches the client

    def _bucket(self):
        return self.client.storage.from_(self.bucket)

    async def _run(self, operation: str, key: Optional[str], func, *args, **kwargs) -> Any:
        """Run a blocking client call in a thread, mapping client errors."""
        try:
            return await self._with_timeout(
                operation, key, lambda: asyncio.to_thread(func, *args, **kwargs)
            )
        except StorageApiError as e:
            if _is_not_found(e):
                raise ObjectNotFound(key or "")
            raise TransientIOError(f"{operation} failed: {e}", key=key)
        except httpx.HTTPError as e:
            raise TransientIOError(f"{operation} failed: {e}", key=key)

    async def _list_page(self, prefix: str, limit: int, offset: int) -> Tuple[List[ObjectInfo], int]:
        options: Dict[str, Any] = {
            "limit": limit,
            "offset": offset,
            "sortBy": {"column": "name", "order": "asc"},
        }
        if prefix:
            options["search"] = prefix

        rows = await self._run("list", prefix, self._bucket().list, "", options) or []

        # search is an ILIKE pattern server side, so rows may not share the prefix
        entries = []
        for row in rows:
            name = row.get("name")
            # Folder placeholders come back without an id
            if not name or row.get("id") is None:
                continue
            if prefix and not name.startswith(prefix):
                continue
            metadata = row.get("metadata") or {}
            entries.append(ObjectInfo(
                key=name,
                size=metadata.get("size"),
                updated_at=_parse_timestamp(row.get("updated_at"))
            ))
        return entries, len(rows)

    async def upload(
        self,
        key: str,
        data: bytes,
        content_type: str = DEFAULT_CONTENT_TYPE,
        overwrite: bool = True
    ) -> None:
        file_options = {
            "content-type": content_type,
            "upsert": "true" if overwrite else "false",
        }
        await self._run("upload", key, self._bucket().upload, key, data, file_options)
        self.logger.debug("Uploaded object", key=key, size=len(data))

    async def download(self, key: str) -> bytes:
        data = await self._run("download", key, self._bucket().download, key)
        self.logger.debug("Downloaded object", key=key, size=len(data))
        return data

    async def remove(self, keys: List[str]) -> None:
        if not keys:
            return
        await self._run("remove", keys[0], self._bucket().remove, list(keys))
        self.logger.debug("Removed objects", keys=keys)

    async def move(self, old_key: str, new_key: str) -> None:
        """Server-side move; Supabase moves are atomic per object."""
        await self._run("move", old_key, self._bucket().move, old_key, new_key)
        self.logger.debug("Moved object", old_key=old_key, new_key=new_key)

    async def close(self) -> None:
        self._client = None

    def get_store_info(self) -> Dict[str, Any]:
        info = super().get_store_info()
        info["supabase_url"] = self.supabase_url
        return info


def _is_not_found(error: StorageApiError) -> bool:
    status = str(getattr(error, "status", ""))
    code = str(getattr(error, "code", "")).lower()
    return status == "404" or code in ("not_found", "nosuchkey") or "not found" in str(error).lower()


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
