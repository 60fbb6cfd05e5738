"""In-memory stand-ins for the scan engine, the AI analyzer and the notifier."""
import asyncio
from dataclasses import dataclass
from typing import List, Optional

from app.schemas.ai import IssueAnalysis, PageAnalysis
from app.schemas.scan_engine import EngineResult, FindingDetails, RawFinding
from app.services.email_sender import DeliveryResult


def finding(check: str, status: str, confidence: float = 0.9, message: str = "") -> RawFinding:
    return RawFinding(
        check=check,
        status=status,
        confidence=confidence,
        details=FindingDetails(message=message),
    )


def engine_result(*findings: RawFinding, **overrides) -> EngineResult:
    values = {"success": True, "load_time_ms": 1200, "raw_findings": list(findings)}
    values.update(overrides)
    return EngineResult(**values)


@dataclass
class EngineCall:
    url: str
    depth: str
    timeout: int


class FakeScanEngine:
    """Returns queued results in order; an Exception in the queue is raised."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls: List[EngineCall] = []
        self.started = asyncio.Event()
        self.gate: Optional[asyncio.Event] = None
        self.screenshot = b"\x89PNG fake screenshot"

    def queue(self, *results):
        self.results.extend(results)

    async def run(self, url: str, depth: str, timeout: int) -> EngineResult:
        self.calls.append(EngineCall(url, depth, timeout))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def fetch_screenshot(self, ref: str) -> Optional[bytes]:
        return self.screenshot if ref else None


class FakeAnalyzer:
    """Analyzer returning canned analyses, or raising the configured error."""

    def __init__(self, available: bool = True):
        self.available = available
        self.page_analysis = PageAnalysis()
        self.issue_analysis = IssueAnalysis()
        self.page_error: Optional[Exception] = None
        self.issue_error: Optional[Exception] = None
        self.page_calls = 0
        self.issue_calls: List[str] = []

    async def analyze_page(self, page_title, shop_domain, raw_findings, screenshot) -> PageAnalysis:
        self.page_calls += 1
        if self.page_error is not None:
            raise self.page_error
        return self.page_analysis

    async def analyze_issue(
        self, issue_type, severity, title, evidence, page_title, shop_domain, screenshot=None
    ) -> IssueAnalysis:
        self.issue_calls.append(issue_type)
        if self.issue_error is not None:
            raise self.issue_error
        return self.issue_analysis


class FakeNotifier:
    """Records deliveries. Channels in ``failing`` report failure, ``raising`` raise."""

    def __init__(self):
        self.sent: List[tuple] = []
        self.failing = set()
        self.raising = set()

    async def send_notification(self, channel, recipient, issue, page) -> DeliveryResult:
        if channel in self.raising:
            raise ConnectionError("notifier down")
        if channel in self.failing:
            return DeliveryResult(False, "mailbox unavailable")
        self.sent.append((channel, recipient, issue.id))
        return DeliveryResult(True)

    def channels_sent(self) -> List[str]:
        return [channel for channel, _, _ in self.sent]
