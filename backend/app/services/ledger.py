"""Issue ledger - merges issue candidates into persistent issues.

Per (page, issue type) the ledger keeps at most one current issue (open or
acknowledged). Each scan pass either creates, escalates, refreshes,
de-escalates or resolves it:

- no current issue + candidate            -> create (occurrence_count=1)
- heavier candidate than current          -> escalate, clear AI annotation
- same weight                             -> refresh, keep AI annotation
- lighter candidate than current          -> resolve current; the lighter
                                             finding is created fresh by a later pass
- pass signal for the type                -> resolve

occurrence_count counts observations, so replaying the same scan twice
increments it twice.
"""
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import IssueStateError
from ..models import Issue, ProductPage, Scan
from ..models.issue import ACTIVE_STATUSES, IssueStatus, Severity
from .classifier import Classification, IssueCandidate

logger = logging.getLogger(__name__)


class MergeAction(str, enum.Enum):
    ESCALATE = "escalate"
    REFRESH = "refresh"
    DEESCALATE = "deescalate"


def decide_merge(current: Severity, incoming: Severity) -> MergeAction:
    """Compare severity weights of the current issue and a new candidate."""
    if incoming.weight() > current.weight():
        return MergeAction.ESCALATE
    if incoming.weight() < current.weight():
        return MergeAction.DEESCALATE
    return MergeAction.REFRESH


@dataclass
class LedgerChange:
    """One transition applied during a merge pass."""
    issue: Issue
    action: str  # created, escalated, refreshed, deescalated, resolved


@dataclass
class LedgerResult:
    """Issues still current after the pass, plus every transition applied."""
    touched: List[Issue] = field(default_factory=list)
    changes: List[LedgerChange] = field(default_factory=list)

    def actions_for(self, issue_type: str) -> List[str]:
        return [c.action for c in self.changes if c.issue.issue_type == issue_type]


class IssueLedger:
    """Service that owns every issue state transition."""

    async def current_issue(
        self,
        session: AsyncSession,
        page_id: int,
        issue_type: str,
    ) -> Optional[Issue]:
        """The open or acknowledged issue of a type on a page, if any."""
        result = await session.execute(
            select(Issue)
            .where(
                Issue.product_page_id == page_id,
                Issue.issue_type == issue_type,
                Issue.status.in_(ACTIVE_STATUSES),
            )
            .order_by(Issue.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def merge(
        self,
        session: AsyncSession,
        page: ProductPage,
        scan: Scan,
        classification: Classification,
    ) -> LedgerResult:
        """Apply one scan's classification to the page's issues."""
        outcome = LedgerResult()

        for candidate in classification.candidates:
            existing = await self.current_issue(session, page.id, candidate.issue_type)

            if existing is None:
                issue = await self.create_issue(session, page, scan, candidate)
                outcome.touched.append(issue)
                outcome.changes.append(LedgerChange(issue, "created"))
                continue

            action = decide_merge(existing.severity_level, candidate.severity)
            if action == MergeAction.ESCALATE:
                self._escalate(existing, scan, candidate)
                outcome.touched.append(existing)
                outcome.changes.append(LedgerChange(existing, "escalated"))
            elif action == MergeAction.REFRESH:
                self._refresh(existing, scan, candidate)
                outcome.touched.append(existing)
                outcome.changes.append(LedgerChange(existing, "refreshed"))
            else:
                existing.status = IssueStatus.RESOLVED.value
                outcome.changes.append(LedgerChange(existing, "deescalated"))
                logger.info(
                    f"De-escalated {existing.issue_type} on page {page.id}: "
                    f"{existing.severity} -> {candidate.severity.value}, resolved issue {existing.id}"
                )

        for issue_type in sorted(classification.resolved_types):
            existing = await self.current_issue(session, page.id, issue_type)
            if existing is None:
                continue
            existing.status = IssueStatus.RESOLVED.value
            outcome.changes.append(LedgerChange(existing, "resolved"))
            logger.info(f"Resolved {issue_type} issue {existing.id} on page {page.id}")

        await session.flush()
        await self.update_page_status(session, page)
        return outcome

    async def create_issue(
        self,
        session: AsyncSession,
        page: ProductPage,
        scan: Optional[Scan],
        candidate: IssueCandidate,
        **ai_fields,
    ) -> Issue:
        """Insert a fresh open issue with occurrence_count=1."""
        now = datetime.utcnow()
        issue = Issue(
            product_page_id=page.id,
            scan_id=scan.id if scan else None,
            issue_type=candidate.issue_type,
            severity=candidate.severity.value,
            title=candidate.title,
            description=candidate.description,
            evidence=candidate.evidence,
            status=IssueStatus.OPEN.value,
            occurrence_count=1,
            first_detected_at=now,
            last_detected_at=now,
            **ai_fields,
        )
        session.add(issue)
        await session.flush()
        logger.info(
            f"Created {candidate.severity.value} {candidate.issue_type} issue {issue.id} on page {page.id}"
        )
        return issue

    def _escalate(self, issue: Issue, scan: Scan, candidate: IssueCandidate):
        logger.info(
            f"Escalating issue {issue.id} ({issue.issue_type}): {issue.severity} -> {candidate.severity.value}"
        )
        issue.severity = candidate.severity.value
        issue.title = candidate.title
        issue.description = candidate.description
        issue.evidence = candidate.evidence
        issue.occurrence_count += 1
        issue.last_detected_at = datetime.utcnow()
        issue.scan_id = scan.id
        issue.clear_ai_annotation()

    def _refresh(self, issue: Issue, scan: Scan, candidate: IssueCandidate):
        issue.title = candidate.title
        issue.description = candidate.description
        issue.evidence = candidate.evidence
        issue.occurrence_count += 1
        issue.last_detected_at = datetime.utcnow()
        issue.scan_id = scan.id
        logger.debug(f"Refreshed issue {issue.id} ({issue.issue_type}), occurrences={issue.occurrence_count}")

    async def acknowledge(self, session: AsyncSession, issue: Issue, by: Optional[str] = None) -> Issue:
        """Merchant saw the issue. Only an explicit reopen clears this."""
        if issue.status == IssueStatus.RESOLVED.value:
            raise IssueStateError(f"Issue {issue.id} is resolved and cannot be acknowledged")
        issue.status = IssueStatus.ACKNOWLEDGED.value
        issue.acknowledged_at = datetime.utcnow()
        issue.acknowledged_by = by
        await session.flush()
        await self._recompute_page_status(session, issue)
        return issue

    async def reopen(self, session: AsyncSession, issue: Issue) -> Issue:
        """Put an acknowledged or resolved issue back to open."""
        if issue.status == IssueStatus.OPEN.value:
            return issue
        if issue.status == IssueStatus.RESOLVED.value:
            current = await self.current_issue(session, issue.product_page_id, issue.issue_type)
            if current is not None and current.id != issue.id:
                raise IssueStateError(
                    f"Page {issue.product_page_id} already has issue {current.id} of type {issue.issue_type}"
                )
        issue.status = IssueStatus.OPEN.value
        issue.acknowledged_at = None
        issue.acknowledged_by = None
        await session.flush()
        await self._recompute_page_status(session, issue)
        return issue

    async def resolve(self, session: AsyncSession, issue: Issue) -> Issue:
        issue.status = IssueStatus.RESOLVED.value
        await session.flush()
        await self._recompute_page_status(session, issue)
        return issue

    async def _recompute_page_status(self, session: AsyncSession, issue: Issue):
        page = await session.get(ProductPage, issue.product_page_id)
        if page is not None:
            await self.update_page_status(session, page)

    async def update_page_status(self, session: AsyncSession, page: ProductPage):
        """Recompute the page health from its open issues."""
        result = await session.execute(
            select(Issue.severity).where(
                Issue.product_page_id == page.id,
                Issue.status == IssueStatus.OPEN.value,
            )
        )
        severities = set(result.scalars().all())

        if Severity.HIGH.value in severities:
            page.status = "critical"
        elif severities:
            page.status = "warning"
        else:
            page.status = "healthy"


# Global instance
issue_ledger = IssueLedger()
