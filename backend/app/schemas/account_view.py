"""Response schemas for the account view, exclusions and rebuild runs."""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime


class AccountViewRowResponse(BaseModel):
    """One row of the published account view"""
    account_id: str
    position: int
    account_name: str
    opportunity_id: Optional[str] = None
    opportunity_name: Optional[str] = None
    renewal_link: Optional[str] = None
    auto_renewal: Optional[str] = None

    renewal_date: Optional[datetime] = None
    renewable: Optional[str] = None
    forecast_category: Optional[str] = None
    status: Optional[str] = None
    stage: Optional[str] = None
    amount_gross: Optional[str] = None
    login_score: Optional[str] = None
    audit_usage: Optional[str] = None
    journey_usage: Optional[str] = None
    forecast: Optional[str] = None
    csm: Optional[str] = None
    ae: Optional[str] = None
    support_type: Optional[str] = None

    engagement_score: int
    days_since_last_contact: Optional[int] = None
    email_total: int = 0
    emails_sent: int = 0
    emails_received: int = 0
    emails_30d: int = 0
    emails_90d: int = 0
    last_email_date: Optional[datetime] = None
    meetings_past: int = 0
    meetings_future: int = 0
    meetings_30d: int = 0
    avg_attendance_pct: int = 0
    last_meeting_date: Optional[datetime] = None
    next_meeting_date: Optional[datetime] = None
    tasks_total: int = 0
    tasks_open: int = 0
    tasks_closed: int = 0
    recaps_count: int = 0
    action_items_count: int = 0

    recent_email_snippets: Optional[str] = ""
    recent_task_summaries: Optional[str] = ""
    recent_recap_summaries: Optional[str] = ""

    task_ids: List[str] = Field(default_factory=list)
    email_ids: List[str] = Field(default_factory=list)
    meeting_ids: List[str] = Field(default_factory=list)
    recap_ids: List[str] = Field(default_factory=list)
    action_item_ids: List[str] = Field(default_factory=list)

    content_hash: str
    engagement_summary: Optional[str] = None
    generated_at: datetime

    class Config:
        from_attributes = True


class AccountExclusionResponse(BaseModel):
    account_id: str
    account_name: Optional[str] = None
    reason: str
    detail: Optional[str] = None
    generated_at: datetime

    class Config:
        from_attributes = True


class ConsolidationRunResponse(BaseModel):
    id: int
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    accounts_included: int = 0
    accounts_excluded: int = 0
    newly_active: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None

    class Config:
        from_attributes = True


class AccountDiagnosis(BaseModel):
    account_id: str
    account_name: Optional[str] = None
    found: bool
    included: bool
    reason: Optional[str] = None
    detail: Optional[str] = None
    steps: List[Dict[str, Any]] = Field(default_factory=list)
    source_counts: Dict[str, int] = Field(default_factory=dict)


class EngagementSummaryUpdate(BaseModel):
    """Downstream summary written against a specific content hash"""
    summary: str
    content_hash: str


class NewlyActiveAccount(BaseModel):
    id: str
    name: str
    next_renewal_opportunity_id: Optional[str] = None

    class Config:
        from_attributes = True


class AccountNoteResponse(BaseModel):
    account_id: str
    content: str = ""
    last_saved: Optional[datetime] = None


class AccountNoteUpdate(BaseModel):
    content: str
    account_name: Optional[str] = None


class NotesAccount(BaseModel):
    """Entry of the notes sidebar account list"""
    id: str
    name: str
    has_notes: bool = False
