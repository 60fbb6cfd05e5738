"""Scan trigger API endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..schemas.scan import SweepResult, TriggerResult
from ..services.orchestrator import ScanOrchestrator
from ..services.scheduler import scheduler_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["scans"])


def get_orchestrator() -> ScanOrchestrator:
    """Dependency returning the orchestrator wired to the scheduler."""
    return scheduler_service.orchestrator


@router.post("/pages/{page_id}/scan", response_model=TriggerResult)
async def trigger_page_scan(
    page_id: int,
    depth: Optional[str] = Query(None, pattern="^(quick|deep)$"),
    orchestrator: ScanOrchestrator = Depends(get_orchestrator),
):
    """Queue a scan for a page. Skips are reported in the body, not as errors."""
    result = await orchestrator.trigger_scan(page_id, forced_depth=depth)
    if not result.enqueued:
        logger.info(f"Manual scan for page {page_id} skipped: {result.reason}")
    return result


@router.post("/scans/sweep", response_model=SweepResult)
async def run_sweep(orchestrator: ScanOrchestrator = Depends(get_orchestrator)):
    """Queue scans for every due page now instead of waiting for the interval."""
    return await orchestrator.trigger_scheduled_sweep()
