"""Pydantic schemas for request/response validation."""

from app.schemas.recap import MeetingRecapPayload
from app.schemas.account_view import (
    AccountViewRowResponse,
    AccountExclusionResponse,
    ConsolidationRunResponse,
    AccountDiagnosis,
    EngagementSummaryUpdate,
    NewlyActiveAccount,
    AccountNoteResponse,
    AccountNoteUpdate,
    NotesAccount,
)
from app.schemas.sources import (
    EmailRecord,
    CalendarEventRecord,
    TaskRecord,
    IngestionStatsResponse,
    FeedImportResponse,
)
