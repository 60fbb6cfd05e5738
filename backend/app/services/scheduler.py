"""Scheduler service - the worker queue behind the scan orchestrator.

Jobs:
- sweep: interval job that queues every due page of every eligible shop
- scan-<page_id>: one-shot job for a triggered scan, at most one queued per page
- rescan-<page_id>: one-shot confirmation rescan, replaced when rescheduled

The in-process AsyncIOScheduler is the queue; the orchestrator's single-flight
guard covers the window where a queued job has started running.
"""
import logging
from datetime import datetime
from typing import Optional

from apscheduler.jobstores.base import ConflictingIdError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings
from .orchestrator import ScanOrchestrator

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "sweep"


def scan_job_id(page_id: int) -> str:
    return f"scan-{page_id}"


def rescan_job_id(page_id: int) -> str:
    return f"rescan-{page_id}"


class SchedulerService:
    """Owns the APScheduler instance and the orchestrator that its jobs call."""

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self._running = False
        self.orchestrator = ScanOrchestrator(
            enqueue=self.enqueue_scan,
            schedule_rescan=self.schedule_rescan,
        )

    def start(self):
        """Start the scheduler."""
        if self._running:
            return

        self.scheduler.add_job(
            self._run_sweep,
            trigger=IntervalTrigger(minutes=settings.sweep_interval_minutes),
            id=SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.start()
        self._running = True
        logger.info(
            f"Scheduler started (sweep every {settings.sweep_interval_minutes}m, "
            f"max_concurrent={settings.max_concurrent_scans})"
        )

    def stop(self):
        """Stop the scheduler."""
        if self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    def enqueue_scan(self, page_id: int, forced_depth: Optional[str] = None) -> bool:
        """Queue a scan job. False when one is already queued for the page."""
        try:
            self.scheduler.add_job(
                self._run_scan,
                trigger=DateTrigger(run_date=datetime.utcnow(), timezone="UTC"),
                id=scan_job_id(page_id),
                args=[page_id, forced_depth],
                misfire_grace_time=None,
            )
        except ConflictingIdError:
            logger.info(f"Scan for page {page_id} already queued")
            return False
        logger.debug(f"Queued scan for page {page_id} (depth={forced_depth or 'auto'})")
        return True

    def schedule_rescan(self, page_id: int, run_at: datetime):
        """Schedule the confirmation rescan, replacing any pending one for the page."""
        self.scheduler.add_job(
            self._run_scan,
            trigger=DateTrigger(run_date=run_at, timezone="UTC"),
            id=rescan_job_id(page_id),
            args=[page_id, None],
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.info(f"Rescan for page {page_id} scheduled at {run_at.isoformat()}")

    async def _run_scan(self, page_id: int, forced_depth: Optional[str]):
        try:
            outcome = await self.orchestrator.run_scan(page_id, forced_depth)
            logger.debug(f"Scan job for page {page_id} finished: {outcome.status}")
        except Exception as e:
            logger.error(f"Error running scan for page {page_id}: {e}", exc_info=True)

    async def _run_sweep(self):
        try:
            await self.orchestrator.trigger_scheduled_sweep()
        except Exception as e:
            logger.error(f"Error running scheduled sweep: {e}", exc_info=True)


# Global instance
scheduler_service = SchedulerService()
