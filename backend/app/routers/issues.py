"""Issue state API endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..exceptions import IssueStateError
from ..models import Issue
from ..schemas.scan import IssueResponse
from ..services.ledger import issue_ledger
from ..utils.db_utils import retry_on_lock

router = APIRouter(prefix="/api/issues", tags=["issues"])


class AcknowledgeRequest(BaseModel):
    acknowledged_by: Optional[str] = None


async def _get_issue(db: AsyncSession, issue_id: int) -> Issue:
    issue = await db.get(Issue, issue_id)
    if issue is None:
        raise HTTPException(status_code=404, detail="Issue not found")
    return issue


@router.post("/{issue_id}/acknowledge", response_model=IssueResponse)
async def acknowledge_issue(
    issue_id: int,
    request: Optional[AcknowledgeRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    """Mark an issue as seen by the merchant."""
    issue = await _get_issue(db, issue_id)
    try:
        await issue_ledger.acknowledge(db, issue, by=request.acknowledged_by if request else None)
    except IssueStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    await retry_on_lock(db.commit)
    return issue


@router.post("/{issue_id}/reopen", response_model=IssueResponse)
async def reopen_issue(issue_id: int, db: AsyncSession = Depends(get_db)):
    """Put an acknowledged or resolved issue back to open."""
    issue = await _get_issue(db, issue_id)
    try:
        await issue_ledger.reopen(db, issue)
    except IssueStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    await retry_on_lock(db.commit)
    return issue
