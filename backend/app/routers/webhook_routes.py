"""
Meeting recap webhook.

POST /recaps?type=meeting_recap with the recap JSON body.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.database import get_db
from app.errors import InvalidPayloadError
from app.services.recap_ingestion import RecapIngestionService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Webhook"])

SUPPORTED_TYPES = ("meeting_recap",)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@router.post("/recaps")
async def receive_recap(
    request: Request,
    type: Optional[str] = Query(None, description="Webhook type, must be meeting_recap"),
    db: Session = Depends(get_db)
):
    """Receive a meeting recap delivery. Duplicate deliveries report action=skipped."""
    raw = await request.body()
    try:
        payload = json.loads(raw or b"")
    except (ValueError, UnicodeDecodeError) as e:
        logger.error(f"Failed to parse JSON body: {e}")
        return _error(400, f"Invalid JSON: {e}")

    if type not in SUPPORTED_TYPES:
        return _error(400, f"Unknown webhook type: {type}")

    try:
        # Session work runs off the event loop; only the tracker calls are awaited here
        service = await run_in_threadpool(RecapIngestionService, db)
        result = await run_in_threadpool(service.store, payload)
        result = await service.sync_issues(result)
    except InvalidPayloadError as e:
        logger.warning(f"Rejected recap payload: {e}")
        return _error(400, str(e))
    except Exception as e:
        logger.exception("Recap webhook failed")
        return _error(500, str(e))

    return JSONResponse(status_code=200, content=result)


@router.get("/recaps")
async def recap_webhook_info():
    """Health/usage for the webhook endpoint."""
    return {
        "status": "ok",
        "message": "Meeting recap webhook is active",
        "usage": "POST to this URL with ?type=meeting_recap and JSON body",
    }
