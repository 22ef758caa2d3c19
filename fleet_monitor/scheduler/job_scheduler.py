"""Job scheduling for recurring monitor work."""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger


logger = structlog.get_logger(__name__)


class JobScheduler:
    """Manages scheduled monitoring jobs using APScheduler."""

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self.jobs: Dict[str, Any] = {}
        self.running = False

    async def start(self):
        """Start the job scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler.start()
        self.running = True
        logger.info("Job scheduler started")

    async def stop(self):
        """Stop the job scheduler.

        Does not wait for running jobs; callers that must let work finish
        keep their own handle on it.
        """
        if not self.running:
            return

        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Job scheduler stopped")

    def add_interval_job(
        self,
        job_id: str,
        func: Callable,
        seconds: float,
        args: Optional[tuple] = None,
        kwargs: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ):
        """Add an interval-based job. Overlapping runs of the same job are skipped."""
        if job_id in self.jobs:
            logger.warning("Job already exists, replacing", job_id=job_id)
            self.remove_job(job_id)

        trigger = IntervalTrigger(seconds=seconds)

        job = self.scheduler.add_job(
            func=func,
            trigger=trigger,
            id=job_id,
            args=args or (),
            kwargs=kwargs or {},
            name=description or job_id,
            max_instances=1,
            coalesce=True,
        )

        self.jobs[job_id] = {
            "job": job,
            "type": "interval",
            "seconds": seconds,
            "description": description,
            "added_at": datetime.now(timezone.utc),
        }

        logger.info("Added interval job",
                    job_id=job_id,
                    interval_seconds=seconds,
                    description=description)
        return job

    def remove_job(self, job_id: str) -> bool:
        """Remove a scheduled job."""
        if job_id not in self.jobs:
            logger.warning("Job not found", job_id=job_id)
            return False

        try:
            self.scheduler.remove_job(job_id)
        except Exception as e:
            logger.error("Failed to remove job", job_id=job_id, error=str(e))
            return False

        del self.jobs[job_id]
        logger.info("Removed job", job_id=job_id)
        return True

    def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Get status information for a job."""
        if job_id not in self.jobs:
            return None

        job_info = self.jobs[job_id]
        scheduler_job = self.scheduler.get_job(job_id)

        if scheduler_job is None:
            return None

        next_run = getattr(scheduler_job, "next_run_time", None)
        return {
            "job_id": job_id,
            "name": scheduler_job.name,
            "type": job_info["type"],
            "interval_seconds": job_info["seconds"],
            "next_run": next_run.isoformat() if next_run else None,
            "added_at": job_info["added_at"].isoformat(),
            "description": job_info.get("description"),
        }

    def get_scheduler_status(self) -> Dict[str, Any]:
        """Get overall scheduler status."""
        next_run = min(
            (job.next_run_time for job in self.scheduler.get_jobs() if getattr(job, "next_run_time", None)),
            default=None,
        )
        return {
            "running": self.running,
            "job_count": len(self.jobs),
            "next_run": next_run.isoformat() if next_run else None,
        }
