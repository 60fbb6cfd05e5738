"""Schemas for the browser-automation scan engine."""
import logging
from typing import Any, List, Optional
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class FindingDetails(BaseModel):
    """Detector detail block."""
    message: str = ""
    technical_details: dict = Field(default_factory=dict)
    suggestions: List[str] = Field(default_factory=list)
    evidence: dict = Field(default_factory=dict)

    class Config:
        extra = "ignore"


class RawFinding(BaseModel):
    """One detector verdict as reported by the scan engine."""
    check: str
    status: str  # pass, fail, warning, inconclusive
    confidence: float = 0.0
    details: FindingDetails = Field(default_factory=FindingDetails)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        try:
            value = float(v)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring unreadable detector confidence {v!r}")
            return 0.0
        if value != value:  # NaN
            logger.warning("Ignoring NaN detector confidence")
            return 0.0
        if not 0.0 <= value <= 1.0:
            logger.warning(f"Detector confidence {value} out of range, clamping")
        return min(max(value, 0.0), 1.0)

    class Config:
        extra = "ignore"


class EngineResult(BaseModel):
    """Everything the scan engine captured while loading a page."""
    success: bool
    load_time_ms: Optional[int] = None
    raw_findings: List[RawFinding] = Field(default_factory=list)
    js_errors: List[Any] = Field(default_factory=list)
    network_errors: List[Any] = Field(default_factory=list)
    console_logs: List[Any] = Field(default_factory=list)
    html_snapshot_ref: Optional[str] = None
    screenshot_ref: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = True  # False for password-protected or 404 pages

    class Config:
        extra = "ignore"
