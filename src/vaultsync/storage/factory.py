"""Store factory for creating the configured remote object store."""

from typing import Dict, List, Optional, Type

from .base import RemoteObjectStore
from .memory_store import MemoryObjectStore
from .supabase_store import SupabaseObjectStore
from ..config.settings import AppSettings, StorageBackend, get_settings


class StoreFactory:
    """Factory for creating remote object store instances."""

    _store_classes: Dict[StorageBackend, Type[RemoteObjectStore]] = {
        StorageBackend.SUPABASE: SupabaseObjectStore,
        StorageBackend.MEMORY: MemoryObjectStore,
    }

    @classmethod
    def create_store(
        cls,
        settings: Optional[AppSettings] = None,
        backend: Optional[StorageBackend] = None,
        **kwargs
    ) -> RemoteObjectStore:
        """Create a store instance.

        Args:
            settings: Application settings (defaults to the global settings)
            backend: Override the configured backend
            **kwargs: Additional backend parameters

        Returns:
            Configured store instance

        Raises:
            ValueError: If the backend is not supported
        """
        settings = settings or get_settings()
        storage = settings.storage
        backend = backend or storage.backend

        if backend not in cls._store_classes:
            raise ValueError(f"Unsupported storage backend: {backend}")

        store_class = cls._store_classes[backend]

        kwargs.setdefault("timeout_seconds", storage.timeout_seconds)
        kwargs.setdefault("list_page_size", storage.list_page_size)

        if backend == StorageBackend.SUPABASE:
            kwargs.update({
                "supabase_url": storage.supabase_url,
                "supabase_key": storage.supabase_key
            })

        return store_class(bucket=storage.bucket, **kwargs)

    @classmethod
    def get_supported_backends(cls) -> List[StorageBackend]:
        """Get list of supported backends."""
        return list(cls._store_classes.keys())

    @classmethod
    def register_store(cls, backend: StorageBackend, store_class: Type[RemoteObjectStore]):
        """Register a new store backend.

        Args:
            backend: Backend identifier
            store_class: Store class to register
        """
        cls._store_classes[backend] = store_class
