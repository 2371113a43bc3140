"""Local vault file system collaborator."""

from .events import (
    ChangeEvent,
    FileCreated,
    FileModified,
    FileDeleted,
    FileRenamed
)

from .filesystem import (
    LocalFileRecord,
    LocalFileSystem,
    VaultFileSystem,
    normalize_vault_path
)

__all__ = [
    # Events
    "ChangeEvent",
    "FileCreated",
    "FileModified",
    "FileDeleted",
    "FileRenamed",

    # File system
    "LocalFileRecord",
    "LocalFileSystem",
    "VaultFileSystem",
    "normalize_vault_path"
]
