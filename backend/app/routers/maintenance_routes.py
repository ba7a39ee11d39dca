"""
Maintenance routes - recompute derived account references.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.services.remapping import RemappingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/maintenance", tags=["Maintenance"])

REMAP_TARGETS = ("all", "emails", "calendar-events", "recaps", "tasks")


@router.post("/remap")
def remap(
    target: str = Query("all", description="all, emails, calendar-events, recaps or tasks"),
    overwrite: bool = Query(False, description="Re-resolve recaps that already have an account"),
    db: Session = Depends(get_db)
):
    if target not in REMAP_TARGETS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown target '{target}', expected one of {', '.join(REMAP_TARGETS)}"
        )

    service = RemappingService(db)
    if target == "all":
        return service.remap_all(overwrite=overwrite)

    handlers = {
        "emails": service.remap_emails,
        "calendar-events": service.remap_calendar_events,
        "recaps": lambda: service.remap_recaps(overwrite=overwrite),
        "tasks": service.remap_tasks,
    }
    return {target: handlers[target]().to_dict()}


@router.get("/unmapped-domains")
def unmapped_domains(db: Session = Depends(get_db)):
    """External domains without a domain mapping entry."""
    return RemappingService(db).unmapped_domains()


@router.get("/orphans")
def orphaned_records(db: Session = Depends(get_db)):
    """Ids of records whose account id is missing from the account feed."""
    return RemappingService(db).find_orphaned_records()
