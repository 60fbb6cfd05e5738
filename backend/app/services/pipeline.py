"""Scan pipeline - everything that happens after the engine returns.

Steps, in order:
  1. classify detector output into candidates
  2. merge candidates into the issue ledger
  3. AI page analysis (confirm issues, add ones the checks missed)
  4. per-issue AI explanation for issues not yet verified
  5. alert gatekeeper for every touched issue
  6. confirmation rescan for unconfirmed critical issues

Steps 3-5 fail open: each runs inside a savepoint, a failure is logged and
recorded as a StepOutcome, and the affected issues keep their prior state.
"""
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..models import Issue, ProductPage, Scan, Shop
from ..schemas.scan_engine import EngineResult
from .ai_confirmation import AiConfirmationService
from .alerter import AlerterService
from .classifier import classify_scan
from .ledger import IssueLedger
from .outcomes import PipelineReport, StepOutcome
from .rescan import RescanScheduler

logger = logging.getLogger(__name__)


class ScanPipeline:
    """Runs the post-scan steps for one completed scan."""

    def __init__(
        self,
        ledger: IssueLedger,
        ai: Optional[AiConfirmationService],
        alerter: AlerterService,
        rescan: RescanScheduler,
        screenshot_loader=None,
    ):
        self.ledger = ledger
        self.ai = ai
        self.alerter = alerter
        self.rescan = rescan
        self.screenshot_loader = screenshot_loader

    async def run(
        self,
        session: AsyncSession,
        shop: Shop,
        page: ProductPage,
        scan: Scan,
        engine_result: EngineResult,
    ) -> PipelineReport:
        report = PipelineReport(scan_id=scan.id)

        classification = classify_scan(
            engine_result.raw_findings,
            load_time_ms=engine_result.load_time_ms,
            threshold=settings.confidence_threshold,
            slow_page_threshold_ms=settings.slow_page_threshold_ms,
            scan_id=scan.id,
        )
        merged = await self.ledger.merge(session, page, scan, classification)
        issues: List[Issue] = list(merged.touched)
        report.changes.extend((c.issue.id, c.issue.issue_type, c.action) for c in merged.changes)
        logger.info(
            f"Detection on page {page.id}: {len(classification.candidates)} candidates, "
            f"{len(issues)} current issues, {len(merged.changes)} changes"
        )

        if self.ai is not None and self.ai.available:
            screenshot = await self._load_screenshot(engine_result.screenshot_ref)
            if screenshot is not None:
                issues = await self._run_page_analysis(
                    session, shop, page, scan, engine_result, screenshot, issues, report
                )
            for issue in issues:
                if issue.ai_verified_at is None:
                    await self._run_issue_analysis(session, shop, page, issue, screenshot, report)

        for issue in issues:
            await self._run_alert(session, shop, page, issue, report)

        report.rescan_scheduled = await self.rescan.maybe_schedule(page.id, issues) is not None
        report.issue_ids = [issue.id for issue in issues]
        return report

    async def _load_screenshot(self, ref: Optional[str]) -> Optional[bytes]:
        if not ref or self.screenshot_loader is None:
            return None
        try:
            return await self.screenshot_loader(ref)
        except Exception as e:
            logger.warning(f"Screenshot download for AI analysis failed: {e}")
            return None

    async def _run_page_analysis(
        self,
        session: AsyncSession,
        shop: Shop,
        page: ProductPage,
        scan: Scan,
        engine_result: EngineResult,
        screenshot: bytes,
        issues: List[Issue],
        report: PipelineReport,
    ) -> List[Issue]:
        working = list(issues)
        try:
            async with session.begin_nested():
                created = await self.ai.analyze_page(
                    session, shop, page, scan, engine_result.raw_findings, screenshot, working
                )
        except Exception as e:
            logger.error(f"AI page analysis failed for page {page.id}: {e}")
            report.record(StepOutcome(step="ai_page", ok=False, error=str(e)))
            await self._reload(session, [shop, page, scan, *issues])
            return issues

        report.record(StepOutcome(step="ai_page", detail=f"{len(created)} new issue(s)"))
        return working

    async def _run_issue_analysis(
        self,
        session: AsyncSession,
        shop: Shop,
        page: ProductPage,
        issue: Issue,
        screenshot: Optional[bytes],
        report: PipelineReport,
    ):
        try:
            async with session.begin_nested():
                analyzed = await self.ai.analyze_issue(session, shop, page, issue, screenshot)
        except Exception as e:
            logger.error(f"AI analysis failed for issue {issue.id}: {e}")
            report.record(StepOutcome(step="ai_issue", issue_id=issue.id, ok=False, error=str(e)))
            await self._reload(session, [issue])
            return
        report.record(StepOutcome(
            step="ai_issue", issue_id=issue.id, detail="analyzed" if analyzed else "skipped"
        ))

    async def _run_alert(
        self,
        session: AsyncSession,
        shop: Shop,
        page: ProductPage,
        issue: Issue,
        report: PipelineReport,
    ):
        try:
            async with session.begin_nested():
                alerts = await self.alerter.evaluate(session, shop, page, issue)
        except Exception as e:
            logger.error(f"Alerting failed for issue {issue.id}: {e}")
            report.record(StepOutcome(step="alert", issue_id=issue.id, ok=False, error=str(e)))
            await self._reload(session, [issue])
            return

        report.alerts_sent += len(alerts)
        report.record(StepOutcome(
            step="alert", issue_id=issue.id, detail=f"{len(alerts)} alert(s) sent"
        ))

    async def _reload(self, session: AsyncSession, objects: list):
        """Refresh objects whose pending changes were rolled back with a savepoint."""
        for obj in objects:
            await session.refresh(obj)
