"""Tests for confirmation rescan scheduling."""
from datetime import timedelta

import pytest

from app.models import Issue
from app.services.rescan import RescanScheduler, unconfirmed_critical

from tests.factories import NOW


def make_issue(**overrides):
    values = {"issue_type": "missing_price", "severity": "high", "status": "open", "occurrence_count": 1}
    values.update(overrides)
    return Issue(**values)


def test_unconfirmed_critical_filter():
    pending = make_issue()
    issues = [
        pending,
        make_issue(occurrence_count=2),
        make_issue(ai_confirmed=True),
        make_issue(severity="medium"),
    ]

    assert unconfirmed_critical(issues) == [pending]


def test_ai_rejected_issue_still_needs_confirmation():
    issue = make_issue(ai_confirmed=False)

    assert unconfirmed_critical([issue]) == [issue]


@pytest.mark.asyncio
async def test_schedules_once_per_pass_with_delay():
    calls = []
    scheduler = RescanScheduler(lambda page_id, run_at: calls.append((page_id, run_at)), 30, clock=lambda: NOW)

    run_at = await scheduler.maybe_schedule(5, [make_issue(), make_issue(issue_type="checkout_broken")])

    assert run_at == NOW + timedelta(minutes=30)
    assert calls == [(5, NOW + timedelta(minutes=30))]


@pytest.mark.asyncio
async def test_nothing_pending_schedules_nothing():
    calls = []
    scheduler = RescanScheduler(lambda page_id, run_at: calls.append(page_id), clock=lambda: NOW)

    assert await scheduler.maybe_schedule(5, [make_issue(occurrence_count=3)]) is None
    assert await scheduler.maybe_schedule(5, []) is None
    assert calls == []


@pytest.mark.asyncio
async def test_async_schedule_function_is_awaited():
    calls = []

    async def schedule(page_id, run_at):
        calls.append(page_id)

    scheduler = RescanScheduler(schedule, clock=lambda: NOW)

    await scheduler.maybe_schedule(9, [make_issue()])

    assert calls == [9]
