import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    """Owns the background scheduler behind cache sweeps, prefetch flushes
    and background revalidation."""

    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def add_cache_sweep(self, sweep: Callable[[], int], seconds: float) -> None:
        self.scheduler.add_job(
            sweep,
            IntervalTrigger(seconds=seconds),
            id="cache_sweep",
            replace_existing=True,
            misfire_grace_time=30,
        )

    def run_later(self, func: Callable[[], None], delay: float, job_id: str) -> None:
        """Schedule a one-shot job; rescheduling the same id restarts the delay."""
        run_date = datetime.now(self.scheduler.timezone) + timedelta(seconds=delay)
        self.scheduler.add_job(
            func,
            DateTrigger(run_date=run_date),
            id=job_id,
            replace_existing=True,
            misfire_grace_time=30,
        )

    def run_soon(self, func: Callable[[], None], job_id: Optional[str] = None) -> None:
        self.scheduler.add_job(
            func, id=job_id, replace_existing=job_id is not None
        )

    def start(self) -> None:
        if self.scheduler.running:
            return
        self.scheduler.start()
        logger.info("Scheduler started")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
