"""Tests for the HTTP surface."""
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio

from app.database import get_db
from app.main import app
from app.models import Issue
from app.routers.scans import get_orchestrator
from app.schemas.scan import SweepResult, TriggerResult


@pytest.fixture
def orchestrator():
    mock = AsyncMock()
    mock.trigger_scan.return_value = TriggerResult(page_id=1, status="enqueued", depth="deep")
    mock.trigger_scheduled_sweep.return_value = SweepResult(shops_checked=2, pages_due=3, scans_queued=3)
    return mock


@pytest_asyncio.fixture
async def client(session_factory, orchestrator):
    async def override_get_db():
        async with session_factory() as db_session:
            yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()


async def create_issue(session, page, **overrides):
    values = {
        "product_page_id": page.id,
        "issue_type": "checkout_broken",
        "severity": "high",
        "title": "Checkout may be broken",
        "status": "open",
    }
    values.update(overrides)
    issue = Issue(**values)
    session.add(issue)
    await session.commit()
    return issue


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_trigger_scan(client, orchestrator):
    response = await client.post("/api/pages/1/scan", params={"depth": "deep"})

    assert response.status_code == 200
    assert response.json()["status"] == "enqueued"
    orchestrator.trigger_scan.assert_awaited_once_with(1, forced_depth="deep")


@pytest.mark.asyncio
async def test_trigger_scan_rejects_unknown_depth(client, orchestrator):
    response = await client.post("/api/pages/1/scan", params={"depth": "thorough"})

    assert response.status_code == 422
    orchestrator.trigger_scan.assert_not_awaited()


@pytest.mark.asyncio
async def test_skipped_trigger_is_not_an_error(client, orchestrator):
    orchestrator.trigger_scan.return_value = TriggerResult(page_id=1, status="skipped", reason="ineligible")

    response = await client.post("/api/pages/1/scan")

    assert response.status_code == 200
    assert response.json()["reason"] == "ineligible"


@pytest.mark.asyncio
async def test_sweep(client):
    response = await client.post("/api/scans/sweep")

    assert response.status_code == 200
    assert response.json() == {"shops_checked": 2, "pages_due": 3, "scans_queued": 3}


@pytest.mark.asyncio
async def test_acknowledge_issue(client, session, page):
    issue = await create_issue(session, page)

    response = await client.post(f"/api/issues/{issue.id}/acknowledge", json={"acknowledged_by": "sam@acme.test"})

    assert response.status_code == 200
    assert response.json()["status"] == "acknowledged"


@pytest.mark.asyncio
async def test_acknowledge_resolved_issue_conflicts(client, session, page):
    issue = await create_issue(session, page, status="resolved")

    response = await client.post(f"/api/issues/{issue.id}/acknowledge")

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_reopen_conflicts_with_active_issue(client, session, page):
    old = await create_issue(session, page, status="resolved")
    await create_issue(session, page)

    response = await client.post(f"/api/issues/{old.id}/reopen")

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_reopen_acknowledged_issue(client, session, page):
    issue = await create_issue(session, page, status="acknowledged")

    response = await client.post(f"/api/issues/{issue.id}/reopen")

    assert response.status_code == 200
    assert response.json()["status"] == "open"


@pytest.mark.asyncio
async def test_unknown_issue_is_404(client):
    response = await client.post("/api/issues/999/acknowledge")

    assert response.status_code == 404
