"""Request schemas for source record ingestion."""

from pydantic import BaseModel, Field
from typing import Optional, List, Union
from datetime import datetime


class EmailRecord(BaseModel):
    message_id: str
    date: Optional[datetime] = None
    from_address: str = ""
    to_addresses: Union[List[str], str] = Field(default_factory=list)
    cc_addresses: Union[List[str], str] = Field(default_factory=list)
    subject: str = ""
    body_preview: str = ""
    thread_id: Optional[str] = None


class AttendeeRecord(BaseModel):
    email: str
    name: Optional[str] = ""
    status: Optional[str] = ""


class CalendarEventRecord(BaseModel):
    event_id: str
    title: str = ""
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    location: Optional[str] = None
    description: Optional[str] = None
    is_all_day: bool = False
    attendees: List[AttendeeRecord] = Field(default_factory=list)


class TaskRecord(BaseModel):
    task_id: str
    number: Optional[int] = None
    title: str = ""
    description: Optional[str] = None
    state: str = "OPEN"
    status: Optional[str] = None
    priority: Optional[str] = None
    url: Optional[str] = None
    labels: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None


class IngestionStatsResponse(BaseModel):
    created: int = 0
    updated: int = 0
    skipped: int = 0
    invalid: int = 0
    unresolved: int = 0


class FeedImportResponse(BaseModel):
    feed: str
    created: int = 0
    updated: int = 0
    skipped: int = 0
    unresolved: int = 0
    warnings: List[str] = Field(default_factory=list)
