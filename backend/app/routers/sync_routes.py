"""
Sync routes - recap matching and issue tracker synchronisation.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.errors import ConfigurationError, ExternalServiceError
from app.services.issue_tracker import IssueSyncService
from app.services.recap_matcher import RecapMatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Sync"])


def _issue_service(db: Session) -> IssueSyncService:
    try:
        return IssueSyncService(db)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.post("/recaps/match")
def run_recap_matching(db: Session = Depends(get_db)):
    """Full recompute of recap <-> calendar event links."""
    return RecapMatcher(db).run().to_dict()


@router.post("/issues/sync")
async def sync_issues(
    recap_id: Optional[str] = Query(None, description="Only this recap's action items"),
    db: Session = Depends(get_db)
):
    """Create issues for action items that have none yet."""
    result = await _issue_service(db).sync_action_items(recap_id=recap_id)
    return result.to_dict()


@router.post("/issues/labels/sync")
async def sync_labels(
    remove_stale: bool = Query(False, description="Delete account labels of inactive accounts"),
    db: Session = Depends(get_db)
):
    try:
        result = await _issue_service(db).sync_account_labels(remove_stale=remove_stale)
    except ExternalServiceError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return result.to_dict()


@router.post("/issues/import")
async def import_issues(db: Session = Depends(get_db)):
    """Import repository issues as tasks."""
    try:
        stats = await _issue_service(db).import_tasks()
    except ExternalServiceError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return stats.to_dict()
