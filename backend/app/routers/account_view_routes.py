"""
Account view routes - rebuild, read and diagnose the consolidated view.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.errors import ConfigurationError
from app.models import ConsolidationRun
from app.schemas.account_view import (
    AccountViewRowResponse, AccountExclusionResponse, ConsolidationRunResponse,
    AccountDiagnosis, EngagementSummaryUpdate, NewlyActiveAccount
)
from app.services.consolidation_writer import (
    ConsolidationWriter, list_view, list_exclusions, newly_active_accounts
)
from app.services.entity_store import load_snapshot
from app.services.reconciliation import explain_account

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/account-view", tags=["Account View"])


@router.post("/rebuild", response_model=ConsolidationRunResponse)
def rebuild_account_view(db: Session = Depends(get_db)):
    """Recompute the whole view. A failed rebuild keeps the previous view."""
    try:
        run = ConsolidationWriter(db).rebuild()
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return run


@router.get("", response_model=List[AccountViewRowResponse])
def get_account_view(db: Session = Depends(get_db)):
    """Rows ordered by renewal date, undated last."""
    return list_view(db)


@router.get("/exclusions", response_model=List[AccountExclusionResponse])
def get_exclusions(db: Session = Depends(get_db)):
    return list_exclusions(db)


@router.get("/diagnose/{account_id}", response_model=AccountDiagnosis)
def diagnose_account(account_id: str, db: Session = Depends(get_db)):
    """Explain why an account is or is not in the view."""
    try:
        snapshot = load_snapshot(db)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    diagnosis = explain_account(snapshot, account_id)
    if not diagnosis["found"]:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Account {account_id} not found")
    return diagnosis


@router.get("/runs", response_model=List[ConsolidationRunResponse])
def list_runs(limit: int = Query(20, ge=1, le=200), db: Session = Depends(get_db)):
    return db.query(ConsolidationRun).order_by(ConsolidationRun.id.desc()).limit(limit).all()


@router.get("/newly-active", response_model=List[NewlyActiveAccount])
def get_newly_active(db: Session = Depends(get_db)):
    """Accounts that entered the view on the last completed rebuild."""
    return newly_active_accounts(db)


@router.put("/{account_id}/summary")
def update_engagement_summary(
    account_id: str,
    update: EngagementSummaryUpdate,
    db: Session = Depends(get_db)
):
    """Attach a summary; rejected when the row's content changed since it was written."""
    accepted = ConsolidationWriter(db).record_summary(account_id, update.summary, update.content_hash)
    if not accepted:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Row not found or content hash does not match the current row"
        )
    return {"success": True, "account_id": account_id}
