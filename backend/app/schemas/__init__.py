"""Pydantic schemas for collaborator payloads and API responses."""
from .scan_engine import FindingDetails, RawFinding, EngineResult
from .ai import AiFinding, PageAnalysis, IssueAnalysis
from .scan import TriggerResult, SweepResult, IssueResponse

__all__ = [
    "FindingDetails",
    "RawFinding",
    "EngineResult",
    "AiFinding",
    "PageAnalysis",
    "IssueAnalysis",
    "TriggerResult",
    "SweepResult",
    "IssueResponse",
]
