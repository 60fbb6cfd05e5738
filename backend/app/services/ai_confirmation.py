"""AI confirmation - applies analyzer results to issues.

The analyzer is slow and unreliable. Nothing here catches its errors: the
pipeline wraps every call so one failure leaves the issue in its pre-AI state.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Issue, ProductPage, Scan, Shop
from ..models.issue import ISSUE_TYPES, Severity
from ..schemas.ai import AiFinding, PageAnalysis
from ..schemas.scan_engine import RawFinding
from .classifier import IssueCandidate
from .ledger import IssueLedger, issue_ledger

logger = logging.getLogger(__name__)


class AiConfirmationService:
    """Runs page-level and per-issue AI analysis and writes the annotations."""

    def __init__(self, analyzer, ledger: Optional[IssueLedger] = None):
        self.analyzer = analyzer
        self.ledger = ledger or issue_ledger

    @property
    def available(self) -> bool:
        return bool(getattr(self.analyzer, "available", True))

    async def analyze_page(
        self,
        session: AsyncSession,
        shop: Shop,
        page: ProductPage,
        scan: Scan,
        raw_findings: Iterable[RawFinding],
        screenshot: Optional[bytes],
        issues: List[Issue],
    ) -> List[Issue]:
        """Confirm existing issues and create the ones only the AI saw.

        Newly created issues are appended to ``issues`` and also returned.
        """
        analysis: PageAnalysis = await self.analyzer.analyze_page(
            page.title, shop.domain, raw_findings, screenshot
        )
        if analysis.reason:
            logger.info(f"AI page analysis skipped for page {page.id}: {analysis.reason}")
            return []

        scan.analysis_summary = {
            "summary": analysis.summary,
            "page_healthy": analysis.page_healthy,
            "findings_count": len(analysis.findings),
        }

        created = []
        for finding in analysis.findings:
            existing = next((i for i in issues if i.issue_type == finding.issue_type), None)
            if existing is None and finding.new_finding:
                existing = await self.ledger.current_issue(session, page.id, finding.issue_type)
                if existing is not None:
                    issues.append(existing)

            if existing is not None and existing.ai_verified_at is not None:
                logger.debug(f"Issue {existing.id} already AI verified, keeping annotation")
            elif existing is not None:
                self._confirm(existing, finding)
                logger.info(f"AI confirmed {finding.issue_type} issue {existing.id}")
            elif finding.new_finding:
                issue = await self._create_from_finding(session, page, scan, finding)
                issues.append(issue)
                created.append(issue)

        logger.info(
            f"AI page analysis for page {page.id}: {len(analysis.findings)} findings, {len(created)} new"
        )
        if created:
            await self.ledger.update_page_status(session, page)
        return created

    async def analyze_issue(
        self,
        session: AsyncSession,
        shop: Shop,
        page: ProductPage,
        issue: Issue,
        screenshot: Optional[bytes],
    ) -> bool:
        """Explain one issue. Returns False when it was skipped."""
        if issue.ai_verified_at is not None:
            return False

        result = await self.analyzer.analyze_issue(
            issue.issue_type,
            issue.severity,
            issue.title,
            issue.evidence,
            page.title,
            shop.domain,
            screenshot if issue.is_high_severity else None,
        )
        if result.skipped:
            return False

        issue.ai_verified_at = datetime.utcnow()
        if result.merchant_explanation:
            issue.ai_explanation = result.merchant_explanation
        if result.suggested_fix:
            issue.ai_suggested_fix = result.suggested_fix
        if issue.is_high_severity and result.confirmed is not None:
            issue.ai_confirmed = result.confirmed
            issue.ai_confidence = result.confidence
            issue.ai_reasoning = result.reasoning
        await session.flush()
        return True

    def _confirm(self, issue: Issue, finding: AiFinding):
        issue.ai_confirmed = True
        issue.ai_confidence = finding.confidence
        issue.ai_reasoning = finding.description
        issue.ai_explanation = finding.merchant_explanation
        issue.ai_suggested_fix = finding.suggested_fix
        issue.ai_verified_at = datetime.utcnow()

    async def _create_from_finding(
        self,
        session: AsyncSession,
        page: ProductPage,
        scan: Scan,
        finding: AiFinding,
    ) -> Issue:
        catalogue = ISSUE_TYPES.get(finding.issue_type, {})
        candidate = IssueCandidate(
            issue_type=finding.issue_type,
            severity=Severity(finding.severity),
            confidence=finding.confidence,
            title=catalogue.get("title") or (finding.description or finding.issue_type)[:100],
            description=finding.description or catalogue.get("description", ""),
            evidence={
                "ai_detected": True,
                "ai_confidence": finding.confidence,
                "scan_id": scan.id,
            },
            verdict="fail",
        )
        return await self.ledger.create_issue(
            session,
            page,
            scan,
            candidate,
            ai_confirmed=True,
            ai_confidence=finding.confidence,
            ai_reasoning=finding.description,
            ai_explanation=finding.merchant_explanation,
            ai_suggested_fix=finding.suggested_fix,
            ai_verified_at=datetime.utcnow(),
        )
