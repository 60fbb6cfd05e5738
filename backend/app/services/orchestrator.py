"""Scan orchestrator - one monitored page run, end to end.

trigger_scan() is the cheap front door: it checks eligibility and hands the
page to the worker queue. run_scan() is the unit of work the queue executes:
it holds the page's single-flight key, calls the scan engine with retries and
then runs the post-scan pipeline.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import selectinload

from ..config import settings
from ..database import async_session
from ..exceptions import PageNotFoundError, ScanEngineError
from ..models import Issue, ProductPage, Scan, Shop, visible_pages
from ..models.issue import IssueStatus, Severity
from ..schemas.scan import SweepResult, TriggerResult
from ..schemas.scan_engine import EngineResult
from ..utils.db_utils import is_transient_db_error, retry_on_lock
from ..utils.retry import retry_with_backoff
from .ai_analyzer import gemini_analyzer
from .ai_confirmation import AiConfirmationService
from .alerter import AlerterService, alerter_service
from .eligibility import BillingEligibility
from .ledger import IssueLedger, issue_ledger
from .outcomes import PipelineReport
from .pipeline import ScanPipeline
from .rescan import RescanScheduler
from .scan_engine import scan_engine
from .single_flight import ScanGuard

logger = logging.getLogger(__name__)

DEEP = "deep"
QUICK = "quick"


@dataclass
class ScanOutcome:
    """What run_scan() did for a page."""
    page_id: int
    status: str  # completed, failed, skipped
    reason: Optional[str] = None
    depth: Optional[str] = None
    scan_id: Optional[int] = None
    attempts: int = 0
    error: Optional[str] = None
    report: Optional[PipelineReport] = None


def _is_transient(error: Exception) -> bool:
    if isinstance(error, ScanEngineError):
        return error.retryable
    return is_transient_db_error(error)


class ScanOrchestrator:
    """Composes eligibility, scan depth, the scan engine and the pipeline."""

    def __init__(
        self,
        session_factory=None,
        engine=None,
        analyzer=None,
        alerter: Optional[AlerterService] = None,
        ledger: Optional[IssueLedger] = None,
        eligibility=None,
        enqueue=None,
        schedule_rescan=None,
        guard: Optional[ScanGuard] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        max_concurrent: Optional[int] = None,
        sleep=asyncio.sleep,
    ):
        self.session_factory = session_factory or async_session
        self.engine = engine or scan_engine
        self.eligibility = eligibility or BillingEligibility(clock)
        self.guard = guard or ScanGuard()
        self._clock = clock
        self._sleep = sleep
        self._enqueue_fn = enqueue
        self._semaphore = asyncio.Semaphore(max_concurrent or settings.max_concurrent_scans)
        self._tasks: Dict[str, asyncio.Task] = {}

        analyzer = analyzer if analyzer is not None else gemini_analyzer
        self.pipeline = ScanPipeline(
            ledger=ledger or issue_ledger,
            ai=AiConfirmationService(analyzer, ledger or issue_ledger),
            alerter=alerter or alerter_service,
            rescan=RescanScheduler(schedule_rescan or self._schedule_rescan_in_process, clock=clock),
            screenshot_loader=getattr(self.engine, "fetch_screenshot", None),
        )

    # ------------------------------------------------------------------
    # Front door
    # ------------------------------------------------------------------

    async def trigger_scan(self, page_id: int, forced_depth: Optional[str] = None) -> TriggerResult:
        """Queue a scan for a page, or say why it was skipped."""
        async with self.session_factory() as session:
            try:
                page = await self._load_page(session, page_id)
            except PageNotFoundError:
                return TriggerResult(page_id=page_id, status="skipped", reason="not_found")
            reason = self._skip_reason(page)

        if reason:
            return TriggerResult(page_id=page_id, status="skipped", reason=reason)

        if self.guard.is_held(page_id):
            logger.info(f"Scan for page {page_id} already running, trigger skipped")
            return TriggerResult(page_id=page_id, status="skipped", reason="scan_in_progress")

        if not await self._enqueue(page_id, forced_depth):
            return TriggerResult(page_id=page_id, status="skipped", reason="already_queued")

        return TriggerResult(page_id=page_id, status="enqueued", depth=forced_depth)

    async def trigger_scheduled_sweep(self) -> SweepResult:
        """Queue scans for every due page of every eligible shop."""
        cutoff = self._clock() - timedelta(hours=settings.scan_refresh_hours)

        async with self.session_factory() as session:
            result = await session.execute(select(Shop))
            shops = result.scalars().all()
            eligible_ids = [shop.id for shop in shops if self.eligibility.is_monitoring_allowed(shop)]

            page_ids = []
            if eligible_ids:
                result = await session.execute(
                    select(ProductPage.id)
                    .where(
                        ProductPage.shop_id.in_(eligible_ids),
                        visible_pages(),
                        ProductPage.monitoring_enabled.is_(True),
                        or_(
                            ProductPage.last_scanned_at.is_(None),
                            ProductPage.last_scanned_at < cutoff,
                        ),
                    )
                    .order_by(ProductPage.id)
                )
                page_ids = list(result.scalars().all())

        queued = 0
        for page_id in page_ids:
            trigger = await self.trigger_scan(page_id)
            if trigger.enqueued:
                queued += 1

        logger.info(f"Sweep queued {queued} scans for {len(eligible_ids)} eligible shops")
        return SweepResult(shops_checked=len(eligible_ids), pages_due=len(page_ids), scans_queued=queued)

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    async def run_scan(self, page_id: int, forced_depth: Optional[str] = None) -> ScanOutcome:
        """Scan one page. At most one run per page is in flight at a time."""
        async with self.guard.hold(page_id) as acquired:
            if not acquired:
                logger.info(f"Scan for page {page_id} already in flight, skipping")
                return ScanOutcome(page_id=page_id, status="skipped", reason="scan_in_progress")
            return await self._run_scan_locked(page_id, forced_depth)

    async def _run_scan_locked(self, page_id: int, forced_depth: Optional[str]) -> ScanOutcome:
        try:
            async with self.session_factory() as session:
                page = await self._load_page(session, page_id)
                reason = self._skip_reason(page)
                if reason:
                    logger.info(f"Skipping scan for page {page_id}: {reason}")
                    return ScanOutcome(page_id=page_id, status="skipped", reason=reason)
                depth = await self.determine_scan_depth(session, page, forced_depth)
                url = page.scannable_url(page.shop.storefront_url)
        except PageNotFoundError:
            logger.info(f"Page {page_id} no longer exists, discarding scan")
            return ScanOutcome(page_id=page_id, status="skipped", reason="not_found")

        logger.info(f"Starting {depth} scan for page {page_id} ({url})")
        attempts = 0

        async def attempt(n: int) -> ScanOutcome:
            nonlocal attempts
            attempts = n
            return await self._execute(page_id, url, depth, n)

        try:
            outcome = await retry_with_backoff(
                attempt,
                max_attempts=settings.scan_max_attempts,
                base_delay=settings.scan_retry_base_delay,
                is_retryable=_is_transient,
                sleep=self._sleep,
            )
        except PageNotFoundError:
            logger.info(f"Page {page_id} deleted during scan, discarding results")
            return ScanOutcome(page_id=page_id, status="skipped", reason="not_found", attempts=attempts)
        except ScanEngineError as e:
            logger.warning(f"Scan failed for page {page_id} after {attempts} attempt(s): {e}")
            return ScanOutcome(page_id=page_id, status="failed", depth=depth, attempts=attempts, error=str(e))

        outcome.attempts = attempts
        return outcome

    async def determine_scan_depth(
        self,
        session,
        page: ProductPage,
        forced_depth: Optional[str] = None,
    ) -> str:
        """deep for first scans, open critical issues, the weekly deep day or on request."""
        if forced_depth:
            return forced_depth

        scan_count = await session.scalar(
            select(func.count(Scan.id)).where(Scan.product_page_id == page.id)
        )
        if not scan_count:
            return DEEP

        open_critical = await session.scalar(
            select(func.count(Issue.id)).where(
                Issue.product_page_id == page.id,
                Issue.status == IssueStatus.OPEN.value,
                Issue.severity == Severity.HIGH.value,
            )
        )
        if open_critical:
            return DEEP

        if self._clock().weekday() == settings.deep_scan_weekday:
            return DEEP

        return QUICK

    async def _execute(self, page_id: int, url: str, depth: str, attempt: int) -> ScanOutcome:
        """One engine attempt: record the run, call the engine, run the pipeline."""
        async with self.session_factory() as session:
            page = await self._load_page(session, page_id)
            scan = Scan(product_page_id=page.id, scan_depth=depth, attempt=attempt)
            scan.start()
            session.add(scan)
            await retry_on_lock(session.commit)
            scan_id = scan.id

        result = await self._call_engine(page_id, scan_id, url, depth)

        try:
            report = await self._process_result(page_id, scan_id, result)
        except PageNotFoundError:
            raise
        except Exception as e:
            logger.error(f"Post-scan processing failed for page {page_id}: {e}", exc_info=True)
            await self._record_failure(page_id, scan_id, f"Post-scan processing failed: {e}")
            if is_transient_db_error(e):
                raise
            raise ScanEngineError(f"Post-scan processing failed: {e}", retryable=False) from e

        logger.info(
            f"Scan {scan_id} completed for page {page_id}: {len(report.issue_ids)} issue(s), "
            f"{report.alerts_sent} alert(s), rescan={'yes' if report.rescan_scheduled else 'no'}"
        )
        return ScanOutcome(page_id=page_id, status="completed", depth=depth, scan_id=scan_id, report=report)

    async def _process_result(self, page_id: int, scan_id: int, result: EngineResult) -> PipelineReport:
        async with self.session_factory() as session:
            page = await self._load_page(session, page_id)
            scan = await session.get(Scan, scan_id)
            now = self._clock()
            scan.complete(
                page_load_time_ms=result.load_time_ms,
                js_errors=result.js_errors,
                network_errors=result.network_errors,
                console_logs=result.console_logs,
                html_snapshot_ref=result.html_snapshot_ref,
                screenshot_ref=result.screenshot_ref,
                detection_results=[f.model_dump() for f in result.raw_findings],
            )
            page.last_scanned_at = now

            report = await self.pipeline.run(session, page.shop, page, scan, result)
            await retry_on_lock(session.commit)
        return report

    async def _call_engine(self, page_id: int, scan_id: int, url: str, depth: str) -> EngineResult:
        timeout = settings.deep_scan_timeout_seconds if depth == DEEP else settings.scan_timeout_seconds
        try:
            async with self._semaphore:
                result = await asyncio.wait_for(self.engine.run(url, depth, timeout), timeout=timeout + 30)
            if not result.success:
                raise ScanEngineError(result.error or "Scan failed", retryable=result.retryable)
        except asyncio.TimeoutError:
            error = ScanEngineError(f"Scan timed out after {timeout} seconds")
            await self._record_failure(page_id, scan_id, str(error))
            raise error
        except ScanEngineError as e:
            await self._record_failure(page_id, scan_id, str(e))
            raise
        except Exception as e:
            error = ScanEngineError(f"Unexpected engine error: {e}")
            logger.error(f"Unexpected error scanning page {page_id}: {e}", exc_info=True)
            await self._record_failure(page_id, scan_id, str(error))
            raise error from e
        return result

    async def _record_failure(self, page_id: int, scan_id: int, message: str):
        """Mark the run failed and surface it on the page health."""
        async with self.session_factory() as session:
            scan = await session.get(Scan, scan_id)
            if scan is not None:
                scan.fail(message)
            page = await session.get(ProductPage, page_id)
            if page is not None:
                page.status = "error"
                page.last_scanned_at = self._clock()
            await retry_on_lock(session.commit)
        logger.warning(f"Scan {scan_id} failed for page {page_id}: {message}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_page(self, session, page_id: int) -> ProductPage:
        result = await session.execute(
            select(ProductPage)
            .options(selectinload(ProductPage.shop))
            .where(ProductPage.id == page_id, visible_pages())
        )
        page = result.scalar_one_or_none()
        if page is None:
            raise PageNotFoundError(page_id)
        return page

    def _skip_reason(self, page: ProductPage) -> Optional[str]:
        if not self.eligibility.is_monitoring_allowed(page.shop):
            return "ineligible"
        if not page.monitoring_enabled:
            return "monitoring_disabled"
        return None

    async def _enqueue(self, page_id: int, forced_depth: Optional[str]) -> bool:
        if self._enqueue_fn is not None:
            queued = self._enqueue_fn(page_id, forced_depth)
            if inspect.isawaitable(queued):
                queued = await queued
            return bool(queued)

        key = f"scan-{page_id}"
        task = self._tasks.get(key)
        if task is not None and not task.done():
            return False
        self._tasks[key] = asyncio.create_task(self.run_scan(page_id, forced_depth))
        return True

    def _schedule_rescan_in_process(self, page_id: int, run_at: datetime):
        """Fallback when no scheduler is wired in: one pending rescan task per page."""
        key = f"rescan-{page_id}"
        existing = self._tasks.get(key)
        if existing is not None and not existing.done():
            existing.cancel()
        delay = max((run_at - self._clock()).total_seconds(), 0)
        self._tasks[key] = asyncio.create_task(self._delayed_scan(page_id, delay))

    async def _delayed_scan(self, page_id: int, delay: float):
        await asyncio.sleep(delay)
        await self.run_scan(page_id)
