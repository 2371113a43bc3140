"""Scheduler package for periodic sync jobs."""

from .sync_scheduler import (
    SyncScheduler,
    SchedulerError,
    FLUSH_JOB_ID,
    FULL_SYNC_JOB_ID,
    RETENTION_JOB_ID
)

__all__ = [
    "SyncScheduler",
    "SchedulerError",
    "FLUSH_JOB_ID",
    "FULL_SYNC_JOB_ID",
    "RETENTION_JOB_ID"
]
