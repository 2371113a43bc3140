"""Exception taxonomy for the sync engine.

Per-alias errors are caught by the reconciliation engine and recorded in the
pass report; ``ConfigurationError`` is the only one that aborts a pass before
it starts.
"""

from typing import Optional


class VaultSyncError(Exception):
    """Base exception for all vaultsync errors."""
    pass


class ConfigurationError(VaultSyncError):
    """Raised when remote-store settings are missing or invalid."""
    pass


class TransientIOError(VaultSyncError):
    """Raised when a network or storage call fails or times out.

    Never retried within a pass; the next scheduled pass picks the item up.
    """

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class ObjectNotFound(VaultSyncError):
    """Raised when a key does not exist in the remote store."""

    def __init__(self, key: str, message: Optional[str] = None):
        super().__init__(message or f"Object not found: {key}")
        self.key = key


class SidecarMissing(ObjectNotFound):
    """Raised when a payload has no readable ``.meta.json`` companion."""

    def __init__(self, payload_key: str, detail: Optional[str] = None):
        message = f"Sidecar missing for {payload_key}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(payload_key, message)
        self.payload_key = payload_key


class LocalFileVanished(VaultSyncError):
    """Raised when a local path disappeared between dirty-marking and upload."""

    def __init__(self, path: str):
        super().__init__(f"Local file vanished: {path}")
        self.path = path


class PartialMoveFailure(VaultSyncError):
    """Raised when a copy+remove move copied the object but could not remove the source."""

    def __init__(self, old_key: str, new_key: str, cause: Optional[BaseException] = None):
        super().__init__(f"Moved {old_key} -> {new_key} but failed to remove the source: {cause}")
        self.old_key = old_key
        self.new_key = new_key
        self.cause = cause


class AliasCollision(VaultSyncError):
    """Raised when two local paths encode to the same alias."""

    def __init__(self, alias: str, path: str, winner: str):
        super().__init__(f"alias collision with {winner}")
        self.alias = alias
        self.path = path
        self.winner = winner
