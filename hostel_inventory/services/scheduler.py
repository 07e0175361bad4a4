"""APScheduler wiring for the hold expiry sweep and periodic feed sync."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from hostel_inventory.utils.logger import get_logger


logger = get_logger(__name__)

HOLD_SWEEP_JOB_ID = "hold-expiry-sweep"
FEED_SYNC_JOB_ID = "feed-sync"


class InventoryScheduler:
    """Interval jobs on a BackgroundScheduler; a failing run never unschedules its job."""

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None) -> None:
        self._scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self.runs: Dict[str, int] = {}
        self.failures: Dict[str, int] = {}

    @property
    def scheduler(self) -> BackgroundScheduler:
        return self._scheduler

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running)

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Scheduler started | jobs=%s", [job["id"] for job in self.get_jobs()])

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler shut down")

    def add_interval_job(self, job_id: str, func: Callable[[], object], seconds: float) -> None:
        if seconds <= 0:
            raise ValueError("seconds must be > 0")
        self.runs.setdefault(job_id, 0)
        self.failures.setdefault(job_id, 0)
        self._scheduler.add_job(
            self._guarded(job_id, func),
            trigger="interval",
            seconds=seconds,
            id=job_id,
            name=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info("Job added | job=%s | interval_seconds=%s", job_id, seconds)

    def trigger_job(self, job_id: str) -> None:
        """Run a registered job once on the calling thread."""
        job = self._scheduler.get_job(job_id)
        if job is None:
            raise ValueError(f"Job not found: {job_id}")
        job.func()

    def get_jobs(self) -> List[Dict]:
        return [
            {
                "id": job.id,
                "trigger": str(job.trigger),
                "next_run_time": (
                    job.next_run_time.isoformat()
                    if getattr(job, "next_run_time", None)
                    else None
                ),
            }
            for job in self._scheduler.get_jobs()
        ]

    def _guarded(self, job_id: str, func: Callable[[], object]) -> Callable[[], None]:
        def run() -> None:
            try:
                func()
            except Exception:
                self.failures[job_id] = self.failures.get(job_id, 0) + 1
                logger.exception("Scheduled job failed | job=%s", job_id)
            finally:
                self.runs[job_id] = self.runs.get(job_id, 0) + 1

        return run


def build_inventory_scheduler(
    hold_service,
    sync_service,
    hold_sweep_interval_seconds: float,
    sync_interval_minutes: int,
    scheduler: Optional[BackgroundScheduler] = None,
) -> InventoryScheduler:
    """Register the hold sweep and the feed sync; the caller starts the scheduler."""
    inventory_scheduler = InventoryScheduler(scheduler)
    inventory_scheduler.add_interval_job(
        HOLD_SWEEP_JOB_ID, hold_service.expire_holds, hold_sweep_interval_seconds
    )
    inventory_scheduler.add_interval_job(
        FEED_SYNC_JOB_ID, sync_service.sync_all_active_feeds, sync_interval_minutes * 60
    )
    return inventory_scheduler
