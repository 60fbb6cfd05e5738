"""Tests for the post-scan pipeline's fail-open steps."""
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from app.models import Issue
from app.schemas.ai import AiFinding, IssueAnalysis, PageAnalysis
from app.services.ai_confirmation import AiConfirmationService
from app.services.alerter import AlerterService
from app.services.eligibility import BillingEligibility
from app.services.ledger import IssueLedger
from app.services.pipeline import ScanPipeline
from app.services.rescan import RescanScheduler

from tests.factories import NOW
from tests.fakes import FakeAnalyzer, engine_result, finding


@pytest.fixture
def rescans():
    return []


def build_pipeline(analyzer, alerter, rescans, fake_engine):
    ledger = IssueLedger()
    return ScanPipeline(
        ledger=ledger,
        ai=AiConfirmationService(analyzer, ledger),
        alerter=alerter,
        rescan=RescanScheduler(lambda page_id, run_at: rescans.append(page_id), clock=lambda: NOW),
        screenshot_loader=fake_engine.fetch_screenshot,
    )


@pytest.fixture
def alerter(fake_notifier):
    return AlerterService(notifier=fake_notifier, eligibility=BillingEligibility(lambda: NOW))


async def page_issues(session, page):
    result = await session.execute(select(Issue).where(Issue.product_page_id == page.id).order_by(Issue.id))
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_alert_failure_does_not_block_rescan(session, shop, page, scan, fake_engine, rescans):
    failing_alerter = AsyncMock()
    failing_alerter.evaluate.side_effect = RuntimeError("smtp exploded")
    pipeline = build_pipeline(FakeAnalyzer(available=False), failing_alerter, rescans, fake_engine)

    report = await pipeline.run(session, shop, page, scan, engine_result(
        finding("add_to_cart", "fail"), finding("checkout", "fail"),
    ))

    assert failing_alerter.evaluate.await_count == 2
    assert [f.step for f in report.failures] == ["alert", "alert"]
    assert report.rescan_scheduled
    assert rescans == [page.id]
    assert len(await page_issues(session, page)) == 2


@pytest.mark.asyncio
async def test_ai_failure_leaves_issue_in_pre_ai_state(session, shop, page, scan, fake_engine, alerter, rescans):
    analyzer = FakeAnalyzer()
    analyzer.page_error = RuntimeError("gemini 500")
    analyzer.issue_error = RuntimeError("gemini 500")
    pipeline = build_pipeline(analyzer, alerter, rescans, fake_engine)

    report = await pipeline.run(session, shop, page, scan, engine_result(
        finding("add_to_cart", "fail"), screenshot_ref="shot-1",
    ))

    [issue] = await page_issues(session, page)
    assert issue.status == "open"
    assert issue.occurrence_count == 1
    assert issue.ai_confirmed is None
    assert issue.ai_verified_at is None
    assert scan.analysis_summary is None
    assert {f.step for f in report.failures} == {"ai_page", "ai_issue"}
    assert rescans == [page.id]


@pytest.mark.asyncio
async def test_ai_confirmation_alerts_on_first_sighting(
    session, shop, page, scan, fake_engine, fake_notifier, alerter, rescans
):
    analyzer = FakeAnalyzer()
    analyzer.page_analysis = PageAnalysis(
        findings=[AiFinding(issue_type="missing_add_to_cart", severity="high", confidence=0.93,
                            description="Button missing", merchant_explanation="Nobody can buy this.")],
        summary="Add to Cart is missing.",
        page_healthy=False,
    )
    pipeline = build_pipeline(analyzer, alerter, rescans, fake_engine)

    report = await pipeline.run(session, shop, page, scan, engine_result(
        finding("add_to_cart", "fail"), screenshot_ref="shot-1",
    ))

    [issue] = await page_issues(session, page)
    assert issue.ai_confirmed is True
    assert issue.ai_explanation == "Nobody can buy this."
    assert scan.analysis_summary == {
        "summary": "Add to Cart is missing.", "page_healthy": False, "findings_count": 1,
    }
    assert analyzer.issue_calls == []
    assert report.alerts_sent == 2
    assert sorted(fake_notifier.channels_sent()) == ["admin", "email"]
    assert rescans == []


@pytest.mark.asyncio
async def test_ai_only_finding_creates_confirmed_issue(session, shop, page, scan, fake_engine, alerter, rescans):
    analyzer = FakeAnalyzer()
    analyzer.page_analysis = PageAnalysis(findings=[
        AiFinding(issue_type="missing_price", severity="high", confidence=0.9, new_finding=True),
    ])
    pipeline = build_pipeline(analyzer, alerter, rescans, fake_engine)

    report = await pipeline.run(session, shop, page, scan, engine_result(
        finding("price_visibility", "pass"), screenshot_ref="shot-1",
    ))

    [issue] = await page_issues(session, page)
    assert issue.issue_type == "missing_price"
    assert issue.ai_confirmed is True
    assert issue.occurrence_count == 1
    assert issue.evidence["ai_detected"] is True
    assert report.issue_ids == [issue.id]
    assert page.status == "critical"


@pytest.mark.asyncio
async def test_ai_finding_for_existing_issue_does_not_duplicate(
    session, shop, page, scan, fake_engine, alerter, rescans
):
    pipeline = build_pipeline(FakeAnalyzer(available=False), alerter, rescans, fake_engine)
    await pipeline.run(session, shop, page, scan, engine_result(finding("price_visibility", "fail")))

    analyzer = FakeAnalyzer()
    analyzer.page_analysis = PageAnalysis(findings=[
        AiFinding(issue_type="missing_price", severity="high", confidence=0.9, new_finding=True),
    ])
    pipeline = build_pipeline(analyzer, alerter, rescans, fake_engine)
    await pipeline.run(session, shop, page, scan, engine_result(screenshot_ref="shot-2"))

    [issue] = await page_issues(session, page)
    assert issue.ai_confirmed is True


@pytest.mark.asyncio
async def test_issue_analysis_annotates_unverified_issue(session, shop, page, scan, fake_engine, alerter, rescans):
    analyzer = FakeAnalyzer()
    analyzer.issue_analysis = IssueAnalysis(
        confirmed=False, confidence=0.8, reasoning="Button is visible",
        merchant_explanation="Looks fine to us.", suggested_fix="No action needed.",
    )
    pipeline = build_pipeline(analyzer, alerter, rescans, fake_engine)

    await pipeline.run(session, shop, page, scan, engine_result(
        finding("add_to_cart", "fail"), finding("liquid_errors", "fail"), screenshot_ref="shot-1",
    ))

    atc, liquid = await page_issues(session, page)
    assert atc.ai_confirmed is False
    assert atc.ai_reasoning == "Button is visible"
    assert liquid.ai_confirmed is None
    assert liquid.ai_explanation == "Looks fine to us."
    assert liquid.ai_verified_at is not None
    assert sorted(analyzer.issue_calls) == ["liquid_error", "missing_add_to_cart"]


@pytest.mark.asyncio
async def test_page_analysis_keeps_existing_ai_annotation(session, shop, page, scan, fake_engine, alerter, rescans):
    analyzer = FakeAnalyzer()
    analyzer.page_analysis = PageAnalysis(findings=[
        AiFinding(issue_type="missing_add_to_cart", severity="high", confidence=0.93,
                  description="Button missing", merchant_explanation="Nobody can buy this."),
    ])
    pipeline = build_pipeline(analyzer, alerter, rescans, fake_engine)
    await pipeline.run(session, shop, page, scan, engine_result(
        finding("add_to_cart", "fail"), screenshot_ref="shot-1",
    ))
    [issue] = await page_issues(session, page)
    verified_at = issue.ai_verified_at

    analyzer.page_analysis = PageAnalysis(findings=[
        AiFinding(issue_type="missing_add_to_cart", severity="high", confidence=0.4,
                  description="Maybe hidden by a popup", merchant_explanation="Possibly fine."),
    ])
    await pipeline.run(session, shop, page, scan, engine_result(
        finding("add_to_cart", "fail"), screenshot_ref="shot-2",
    ))

    [issue] = await page_issues(session, page)
    assert issue.occurrence_count == 2
    assert issue.ai_confidence == 0.93
    assert issue.ai_reasoning == "Button missing"
    assert issue.ai_explanation == "Nobody can buy this."
    assert issue.ai_verified_at == verified_at
