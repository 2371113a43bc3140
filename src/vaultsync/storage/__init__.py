"""Remote object store backends."""

from .base import (
    RemoteObjectStore,
    ObjectInfo,
    DEFAULT_CONTENT_TYPE
)

from .memory_store import MemoryObjectStore
from .supabase_store import SupabaseObjectStore
from .factory import StoreFactory

__all__ = [
    # Base classes
    "RemoteObjectStore",
    "ObjectInfo",
    "DEFAULT_CONTENT_TYPE",

    # Backends
    "MemoryObjectStore",
    "SupabaseObjectStore",

    # Factory
    "StoreFactory"
]
