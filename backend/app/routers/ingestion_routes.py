"""
Ingestion routes - registry feed uploads and source record imports.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.errors import ConfigurationError
from app.schemas.sources import (
    EmailRecord, CalendarEventRecord, TaskRecord, IngestionStatsResponse, FeedImportResponse
)
from app.services.feed_loader import FeedLoader, FEED_COLUMNS, parse_csv_file
from app.services.source_ingestion import SourceIngestionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Ingestion"])


# ============================================================================
# FEEDS
# ============================================================================

@router.get("/feeds")
def list_feeds():
    """Supported feeds and their columns."""
    return {
        feed: {"required": list(cols["required"].keys()), "optional": list(cols["optional"].keys())}
        for feed, cols in FEED_COLUMNS.items()
    }


@router.post("/feeds/{feed}", response_model=FeedImportResponse)
def upload_feed(
    feed: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_db)
):
    """
    Import a registry feed CSV.

    accounts are upserted; opportunities, renewals and domain-mappings
    replace the previous snapshot.
    """
    if feed not in FEED_COLUMNS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown feed '{feed}'")

    if file.filename and not file.filename.lower().endswith(".csv"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File must be a CSV")

    content = file.file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File is empty")

    headers, rows = parse_csv_file(content)
    logger.info(f"Feed upload {feed}: {len(rows)} rows from {file.filename}")

    try:
        result = FeedLoader(db).load(feed, rows, headers)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return result.to_dict()


# ============================================================================
# SOURCE RECORDS
# ============================================================================

@router.post("/sources/emails", response_model=IngestionStatsResponse)
def ingest_emails(records: List[EmailRecord], db: Session = Depends(get_db)):
    stats = SourceIngestionService(db).ingest_emails([r.model_dump() for r in records])
    return stats.to_dict()


@router.post("/sources/calendar-events", response_model=IngestionStatsResponse)
def ingest_calendar_events(records: List[CalendarEventRecord], db: Session = Depends(get_db)):
    stats = SourceIngestionService(db).ingest_calendar_events([r.model_dump() for r in records])
    return stats.to_dict()


@router.post("/sources/tasks", response_model=IngestionStatsResponse)
def ingest_tasks(records: List[TaskRecord], db: Session = Depends(get_db)):
    stats = SourceIngestionService(db).ingest_tasks([r.model_dump() for r in records])
    return stats.to_dict()
