"""Sync state database package."""

from .database import (
    DatabaseManager,
    default_database_url,
    init_database
)

from .models import (
    SyncedFileModel,
    SyncPassModel,
    SyncedFileResponse,
    SyncPassResponse,
    PassStatus
)

from .service import SyncStateService

__all__ = [
    # Database management
    "DatabaseManager",
    "default_database_url",
    "init_database",

    # Models
    "SyncedFileModel",
    "SyncPassModel",
    "SyncedFileResponse",
    "SyncPassResponse",
    "PassStatus",

    # Service
    "SyncStateService"
]
