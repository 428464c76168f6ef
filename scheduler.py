import logging
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    """Owns the asyncio scheduler that drives polling live queries."""

    def __init__(self, timezone: Optional[str] = None) -> None:
        settings = get_settings()
        self.scheduler = AsyncIOScheduler(timezone=timezone or settings.timezone)

    def add_poll(
        self,
        job_id: str,
        func: Callable[[], Awaitable[object]],
        interval_secs: float,
    ) -> None:
        trigger = IntervalTrigger(seconds=interval_secs)
        self.scheduler.add_job(
            func,
            trigger,
            id=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=int(max(1, interval_secs * 2)),
        )
        logger.info(f"scheduler_poll_added: job={job_id} every={interval_secs}s")

    def add_daily(
        self,
        job_id: str,
        func: Callable[[], Awaitable[object]],
        hour: int = 0,
        minute: int = 0,
    ) -> None:
        trigger = CronTrigger(hour=hour, minute=minute)
        self.scheduler.add_job(
            func,
            trigger,
            id=job_id,
            replace_existing=True,
            misfire_grace_time=3600,
        )
        logger.info(f"scheduler_daily_added: job={job_id} at={hour:02d}:{minute:02d}")

    def remove(self, job_id: str) -> None:
        if self.scheduler.get_job(job_id) is not None:
            self.scheduler.remove_job(job_id)
            logger.info(f"scheduler_poll_removed: job={job_id}")

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
