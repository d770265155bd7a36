"""
Tick loop runner using APScheduler.

APScheduler only drives the fixed-cadence tick; which jobs run, and when, is
decided by JobScheduler.tick against the persisted `jobs` rows.

Usage:
    manager = get_scheduler_manager()
    manager.start()      # inside a running event loop (app lifespan)
    ...
    await manager.shutdown()
"""
import asyncio
from datetime import datetime, timezone
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from mediaportal.jobs.service import JobScheduler
from mediaportal.lib.logging import get_logger
from mediaportal.lib.settings import settings
from mediaportal.notifications.dispatcher import get_dispatcher


logger = get_logger(__name__)

TICK_JOB_ID = "scheduler-tick"


class SchedulerManager:
    """
    Manager for the APScheduler-driven tick loop with lifecycle management.

    Args:
        job_scheduler: Service whose `tick` is invoked every period
        tick_seconds: Period between ticks
    """

    def __init__(self, job_scheduler: JobScheduler, tick_seconds: Optional[int] = None):
        self.job_scheduler = job_scheduler
        self.tick_seconds = tick_seconds or settings.scheduler_tick_seconds
        self.scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                'coalesce': True,  # Combine missed ticks
                'max_instances': 1,  # A slow tick is never overlapped by the next
                'misfire_grace_time': self.tick_seconds,
            }
        )

        self.scheduler.add_listener(self._on_tick_error, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._on_tick_overlap, EVENT_JOB_MAX_INSTANCES)

        logger.info("SchedulerManager initialized", extra={"tick_seconds": self.tick_seconds})

    def _on_tick_error(self, event):
        """Handle a tick that raised."""
        logger.error(
            f"Scheduler tick raised {event.exception.__class__.__name__}: "
            f"{event.exception}",
            exc_info=event.exception
        )

    def _on_tick_overlap(self, event):
        logger.warning("Scheduler tick skipped; previous tick still evaluating")

    async def _tick(self) -> None:
        await self.job_scheduler.tick()

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        """Start ticking; the first tick runs immediately. Requires a running event loop."""
        if self.scheduler.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler.add_job(
            self._tick,
            trigger=IntervalTrigger(seconds=self.tick_seconds, timezone="UTC"),
            id=TICK_JOB_ID,
            replace_existing=True,
            next_run_time=datetime.now(timezone.utc),
        )
        self.scheduler.start()
        logger.info("Scheduler started")

    async def shutdown(self, wait: bool = True) -> None:
        """
        Stop ticking.

        Args:
            wait: Whether to wait for job runs already started to finish
        """
        if not self.scheduler.running:
            logger.warning("Scheduler not running")
            return
        if self.scheduler.get_job(TICK_JOB_ID) is not None:
            self.scheduler.remove_job(TICK_JOB_ID)
        self.scheduler.shutdown(wait=False)
        # AsyncIOScheduler applies the stop on the next loop iteration
        await asyncio.sleep(0)
        if wait:
            await self.job_scheduler.wait_idle()
        logger.info("Scheduler shutdown")


# Singleton instances
_job_scheduler: Optional[JobScheduler] = None
_scheduler_manager: Optional[SchedulerManager] = None


def get_job_scheduler() -> JobScheduler:
    """
    Get singleton job scheduler wired to the default registry and dispatcher.

    Returns:
        JobScheduler instance
    """
    global _job_scheduler

    if _job_scheduler is None:
        _job_scheduler = JobScheduler(dispatcher=get_dispatcher())

    return _job_scheduler


def get_scheduler_manager() -> SchedulerManager:
    """
    Get singleton scheduler manager.

    Returns:
        SchedulerManager instance
    """
    global _scheduler_manager

    if _scheduler_manager is None:
        _scheduler_manager = SchedulerManager(get_job_scheduler())

    return _scheduler_manager
