"""Core sync components."""

from .models import (
    OutcomeKind,
    RemoteVersion,
    SidecarMetadata,
    Inventory,
    SyncOutcome,
    PassReport
)

from .sidecar import SidecarManager
from .retention import VersionRetention, RetentionReport
from .sync_engine import ReconciliationEngine
from .change_capture import ChangeCapture, DeleteOperation, MoveOperation

__all__ = [
    # Models
    "OutcomeKind",
    "RemoteVersion",
    "SidecarMetadata",
    "Inventory",
    "SyncOutcome",
    "PassReport",

    # Components
    "SidecarManager",
    "VersionRetention",
    "RetentionReport",
    "ReconciliationEngine",
    "ChangeCapture",
    "DeleteOperation",
    "MoveOperation"
]
