"""Scan trigger schemas for API."""
from typing import Optional
from pydantic import BaseModel


class TriggerResult(BaseModel):
    """Outcome of asking for a page scan."""
    page_id: int
    status: str  # enqueued, skipped
    reason: Optional[str] = None  # not_found, ineligible, monitoring_disabled, scan_in_progress, already_queued
    depth: Optional[str] = None

    @property
    def enqueued(self) -> bool:
        return self.status == "enqueued"


class SweepResult(BaseModel):
    """Summary of a scheduled sweep."""
    shops_checked: int
    pages_due: int
    scans_queued: int


class IssueResponse(BaseModel):
    """Issue in API responses."""
    id: int
    product_page_id: int
    issue_type: str
    severity: str
    status: str
    title: str
    occurrence_count: int
    ai_confirmed: Optional[bool] = None

    class Config:
        from_attributes = True
