"""Periodic retry sweep and retention cleanup on an APScheduler background scheduler."""
import logging
from typing import Dict, List, Optional

from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler

from config import RetryPolicy

from .retry_service import RetryService

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "retry-sweep"
CLEANUP_JOB_ID = "retry-cleanup"


class RetryScheduler:
    """Drives RetryService: one sweep job on a fixed interval, one daily cleanup job."""

    def __init__(
        self,
        retry_service: RetryService,
        policy: Optional[RetryPolicy] = None,
        cleanup_hour: int = 2,
    ):
        self.retry_service = retry_service
        self.policy = policy or retry_service.policy
        self.cleanup_hour = cleanup_hour
        self.scheduler = BackgroundScheduler(jobstores={"default": MemoryJobStore()})
        self._started = False
        self._register_jobs()

    def _register_jobs(self) -> None:
        # A single sweep at a time; missed runs collapse into one
        self.scheduler.add_job(
            self.run_sweep,
            trigger="interval",
            id=SWEEP_JOB_ID,
            seconds=self.policy.sweep_seconds,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.run_cleanup,
            trigger="cron",
            id=CLEANUP_JOB_ID,
            hour=self.cleanup_hour,
            minute=0,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    def run_sweep(self) -> int:
        try:
            return self.retry_service.process_pending_retries()
        except Exception as e:
            logger.exception(f"Retry sweep failed: {e}")
            return 0

    def run_cleanup(self) -> int:
        try:
            return self.retry_service.cleanup_old_records()
        except Exception as e:
            logger.exception(f"Retry cleanup failed: {e}")
            return 0

    def start(self) -> None:
        if self._started:
            return
        self.scheduler.start()
        self._started = True
        logger.info(
            f"Retry scheduler started: sweep every {self.policy.sweep_seconds}s, "
            f"cleanup daily at {self.cleanup_hour:02d}:00"
        )

    def shutdown(self) -> None:
        if self._started:
            self.scheduler.shutdown(wait=False)
            self._started = False
            logger.info("Retry scheduler stopped")

    @property
    def running(self) -> bool:
        return self._started

    def list_jobs(self) -> List[Dict[str, Optional[str]]]:
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run_time = getattr(job, "next_run_time", None)
            jobs.append(
                {
                    "id": job.id,
                    "trigger": str(job.trigger),
                    "next_run_time": next_run_time.isoformat() if next_run_time else None,
                }
            )
        return jobs
