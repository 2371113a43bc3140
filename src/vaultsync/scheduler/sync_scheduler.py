"""Job scheduler for periodic flush, full sync and retention."""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.job import Job

from ..config.settings import SyncSettings
from ..core import ChangeCapture, PassReport, ReconciliationEngine, RetentionReport, VersionRetention
from ..utils.logging import get_logger


FLUSH_JOB_ID = "flush"
FULL_SYNC_JOB_ID = "full_sync"
RETENTION_JOB_ID = "retention"


class SchedulerError(Exception):
    """Raised when scheduler operations fail."""
    pass


class SyncScheduler:
    """Runs the dirty-set flush, periodic full syncs and retention on timers."""

    def __init__(
        self,
        engine: ReconciliationEngine,
        capture: ChangeCapture,
        retention: VersionRetention,
        settings: SyncSettings
    ):
        """Initialize the scheduler.

        Args:
            engine: Reconciliation engine for full syncs
            capture: Change capture whose dirty set is flushed
            retention: Version retention run by the GC job
            settings: Sync settings with the job intervals
        """
        self.engine = engine
        self.capture = capture
        self.retention = retention
        self.settings = settings
        self.logger = get_logger(self.__class__.__name__)

        self.scheduler = AsyncIOScheduler(
            job_defaults={
                'coalesce': True,  # Combine multiple pending executions
                'max_instances': 1,  # Only one instance per job
                'misfire_grace_time': 60
            }
        )

        self.active_jobs: Dict[str, Job] = {}
        self.job_stats: Dict[str, Dict[str, Any]] = {}

        self.scheduler.add_listener(self._job_executed, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._job_error, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._job_missed, EVENT_JOB_MISSED)

        self.logger.info("Sync scheduler initialized")

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self):
        """Start the scheduler with the configured jobs."""
        if self.scheduler.running:
            self.logger.warning("Scheduler is already running")
            return

        try:
            self._add_job(
                FLUSH_JOB_ID,
                self._run_flush,
                IntervalTrigger(seconds=self.settings.flush_interval_seconds),
                "Flush dirty paths"
            )

            if self.settings.full_sync_interval_minutes > 0:
                self._add_job(
                    FULL_SYNC_JOB_ID,
                    self._run_full_sync,
                    IntervalTrigger(minutes=self.settings.full_sync_interval_minutes),
                    "Full sync"
                )

            if self.settings.gc_interval_minutes > 0:
                self._add_job(
                    RETENTION_JOB_ID,
                    self._run_retention,
                    IntervalTrigger(minutes=self.settings.gc_interval_minutes),
                    "Version retention"
                )

            self.scheduler.start()
            self.logger.info("Sync scheduler started", active_jobs=len(self.active_jobs))

        except Exception as e:
            self.logger.error("Failed to start scheduler", error=str(e))
            raise SchedulerError(f"Failed to start scheduler: {e}")

    def stop(self, wait: bool = False):
        """Stop the scheduler and all jobs."""
        if not self.scheduler.running:
            return

        try:
            self.scheduler.shutdown(wait=wait)
            self.active_jobs.clear()
            self.logger.info("Sync scheduler stopped")
        except Exception as e:
            # Cleanup problems are not fatal at shutdown
            self.logger.error("Error stopping scheduler", error=str(e))

    async def trigger_full_sync(self) -> PassReport:
        """Run a full sync now, outside the schedule."""
        self.logger.info("Manually triggering full sync")
        return await self.engine.full_sync(trigger="manual")

    def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        if job_id not in self.job_stats:
            return None

        stats = self.job_stats[job_id].copy()
        job = self.active_jobs.get(job_id)
        stats.update({
            "job_id": job_id,
            "next_run": job.next_run_time if job else None,
            "is_scheduled": job is not None
        })
        return stats

    def get_scheduler_stats(self) -> Dict[str, Any]:
        """Get overall scheduler statistics."""
        return {
            "is_running": self.scheduler.running,
            "total_jobs": len(self.active_jobs),
            "jobs": {job_id: self.get_job_status(job_id) for job_id in self.job_stats},
            "total_runs": sum(stats["run_count"] for stats in self.job_stats.values()),
            "total_successes": sum(stats["success_count"] for stats in self.job_stats.values()),
            "total_errors": sum(stats["error_count"] for stats in self.job_stats.values()),
        }

    def _add_job(self, job_id: str, func: Callable, trigger, name: str) -> Job:
        job = self.scheduler.add_job(
            func=func,
            trigger=trigger,
            id=job_id,
            name=name,
            replace_existing=True
        )

        self.active_jobs[job_id] = job
        self.job_stats[job_id] = {
            "name": name,
            "created_at": datetime.now(timezone.utc),
            "last_run": None,
            "run_count": 0,
            "success_count": 0,
            "error_count": 0,
            "last_result": None
        }

        self.logger.info("Job added", job_id=job_id, name=name)
        return job

    async def _run_flush(self) -> Optional[PassReport]:
        return await self.capture.flush()

    async def _run_full_sync(self) -> PassReport:
        return await self.engine.full_sync(trigger="scheduled")

    async def _run_retention(self) -> RetentionReport:
        return await self.retention.run()

    def _job_executed(self, event):
        """Handle job execution event."""
        stats = self.job_stats.get(event.job_id)
        if stats is None:
            return

        stats["last_run"] = datetime.now(timezone.utc)
        stats["run_count"] += 1

        result = getattr(event, "retval", None)
        if isinstance(result, PassReport):
            stats["last_result"] = result.summary()
            if result.failures:
                stats["error_count"] += 1
            else:
                stats["success_count"] += 1
        elif isinstance(result, RetentionReport):
            stats["last_result"] = result.summary()
            if result.failures:
                stats["error_count"] += 1
            else:
                stats["success_count"] += 1
        else:
            stats["success_count"] += 1

    def _job_error(self, event):
        """Handle job error event."""
        stats = self.job_stats.get(event.job_id)
        if stats is not None:
            stats["last_run"] = datetime.now(timezone.utc)
            stats["run_count"] += 1
            stats["error_count"] += 1
            stats["last_result"] = str(event.exception)

        self.logger.error("Scheduled job failed", job_id=event.job_id, error=str(event.exception))

    def _job_missed(self, event):
        """Handle job missed event."""
        self.logger.warning("Scheduled job missed", job_id=event.job_id)
