"""Schemas for AI confirmation results."""
from typing import List, Optional
from pydantic import BaseModel, Field


class AiFinding(BaseModel):
    """An issue the AI saw on the page, already mapped to our issue types."""
    issue_type: str
    severity: str = "medium"
    confidence: float
    description: Optional[str] = None
    merchant_explanation: Optional[str] = None
    suggested_fix: Optional[str] = None
    new_finding: bool = False  # Programmatic checks did not fail this type


class PageAnalysis(BaseModel):
    """Result of page-level analysis."""
    findings: List[AiFinding] = Field(default_factory=list)
    summary: Optional[str] = None
    page_healthy: Optional[bool] = None
    reason: Optional[str] = None  # Set when the analysis was skipped


class IssueAnalysis(BaseModel):
    """Result of per-issue analysis."""
    confirmed: Optional[bool] = None
    confidence: Optional[float] = None
    reasoning: Optional[str] = None
    merchant_explanation: Optional[str] = None
    suggested_fix: Optional[str] = None
    skipped: bool = False
