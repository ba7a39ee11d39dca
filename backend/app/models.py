# backend/app/models.py
"""
SQLAlchemy ORM models.

Source tables (accounts, opportunities, renewals, domain mappings, emails,
calendar events, tasks, meeting recaps, action items) are written by the
ingestion boundary. Derived tables (account view, exclusions, runs) are
written only by the consolidation writer.

All timestamps are stored as naive UTC. Ids are the external system's ids.
"""

from sqlalchemy import (
    Column, String, Boolean, Integer, Text, DateTime, JSON, ForeignKey, UniqueConstraint
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database import Base


# ============================================================================
# ACCOUNT REGISTRY (external feeds)
# ============================================================================

class Account(Base):
    """Persistent customer entity. Never deleted, only marked inactive."""
    __tablename__ = "accounts"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False, index=True)
    next_renewal_opportunity_id = Column(String(64), index=True)
    auto_renewal = Column(String(50))
    is_active = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Account(id={self.id}, name='{self.name}', active={self.is_active})>"


class Opportunity(Base):
    """Sales/renewal deal snapshot."""
    __tablename__ = "opportunities"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False, index=True)
    account_id = Column(String(64), index=True)

    def __repr__(self):
        return f"<Opportunity(id={self.id}, name='{self.name}')>"


class RenewalRecord(Base):
    """
    One row of the renewal tracking feed.

    The feed keys rows by opportunity display name; opportunity_id is the
    surrogate resolved from the opportunity table at import time.
    """
    __tablename__ = "renewal_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    opportunity_name = Column(String(255), nullable=False, unique=True)
    opportunity_id = Column(String(64), index=True)
    link = Column(Text)

    renewal_date = Column(DateTime)
    renewable = Column(String(100))
    forecast_category = Column(String(100))  # feed header "Forcast"
    status = Column(String(100))
    stage = Column(String(100))
    amount_gross = Column(String(100))
    login_score = Column(String(100))
    audit_usage = Column(String(100))
    journey_usage = Column(String(100))
    forecast = Column(String(100))
    csm = Column(String(255))
    ae = Column(String(255))
    support_type = Column(String(100))

    def __repr__(self):
        return f"<RenewalRecord(opportunity='{self.opportunity_name}', date={self.renewal_date})>"


class DomainMapping(Base):
    """Operator-maintained list of e-mail domains per account."""
    __tablename__ = "domain_mappings"

    account_id = Column(String(64), primary_key=True)
    account_name = Column(String(255))
    domains = Column(Text, default="")  # comma separated

    def domain_list(self):
        return [d.strip().lower() for d in (self.domains or "").split(",") if d.strip()]


# ============================================================================
# COMMUNICATION SOURCES
# ============================================================================

class EmailMessage(Base):
    """Imported e-mail. account_id is resolved by domain lookup, not authoritative."""
    __tablename__ = "email_messages"

    message_id = Column(String(255), primary_key=True)
    date = Column(DateTime, index=True)
    from_address = Column(Text, default="")
    to_addresses = Column(JSON, default=list)
    cc_addresses = Column(JSON, default=list)
    subject = Column(Text, default="")
    body_preview = Column(Text, default="")
    thread_id = Column(String(255))

    account_id = Column(String(64), index=True)
    account_name = Column(String(255))
    created_at = Column(DateTime, server_default=func.now())


class CalendarEvent(Base):
    """Imported calendar event."""
    __tablename__ = "calendar_events"

    event_id = Column(String(255), primary_key=True)
    title = Column(Text, default="")
    start = Column(DateTime, index=True)
    end = Column(DateTime)
    location = Column(Text)
    description = Column(Text)
    is_all_day = Column(Boolean, default=False)
    attendees = Column(JSON, default=list)  # [{"email", "name", "status"}]

    account_id = Column(String(64), index=True)
    meeting_recap_id = Column(String(255), index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def attendee_count(self) -> int:
        return len(self.attendees or [])

    @property
    def accepted_count(self) -> int:
        return len([a for a in (self.attendees or []) if str(a.get("status", "")).upper() == "YES"])


class Task(Base):
    """Issue-tracker item, linked to an account through an account label."""
    __tablename__ = "tasks"

    task_id = Column(String(255), primary_key=True)
    number = Column(Integer)
    title = Column(Text, default="")
    description = Column(Text)
    state = Column(String(20), default="OPEN")  # OPEN / CLOSED
    status = Column(String(100))
    priority = Column(String(50))
    url = Column(Text)
    labels = Column(JSON, default=list)

    account_id = Column(String(64), index=True)
    account_name = Column(String(255))
    created_at = Column(DateTime)
    updated_at = Column(DateTime)
    closed_at = Column(DateTime)


# ============================================================================
# MEETING RECAPS (webhook)
# ============================================================================

class MeetingRecap(Base):
    """
    Structured meeting summary from the meeting-intelligence webhook.

    Immutable after creation except account_id (remapping) and
    calendar_event_id (rewritten by every matcher run).
    """
    __tablename__ = "meeting_recaps"

    recap_id = Column(String(255), primary_key=True)
    title = Column(Text, default="")
    start = Column(DateTime, index=True)
    end = Column(DateTime)
    summary = Column(Text, default="")
    meeting_link = Column(Text)
    meeting_url = Column(Text)
    company_name = Column(String(255))

    actual_attendees = Column(JSON, default=list)
    invited_attendees = Column(JSON, default=list)
    all_names = Column(JSON, default=list)
    external_attendees = Column(JSON, default=list)

    account_id = Column(String(64), index=True)
    account_name = Column(String(255))
    mapped_domain = Column(String(255))
    calendar_event_id = Column(String(255), index=True)
    received_at = Column(DateTime, server_default=func.now())

    action_items = relationship(
        "ActionItem",
        back_populates="recap",
        cascade="all, delete-orphan",
        order_by="ActionItem.index"
    )

    def __repr__(self):
        return f"<MeetingRecap(id={self.recap_id}, title='{self.title}')>"


class ActionItem(Base):
    """Action item owned by exactly one recap. Keyed by (recap, owner, index)."""
    __tablename__ = "action_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    recap_id = Column(String(255), ForeignKey("meeting_recaps.recap_id", ondelete="CASCADE"), nullable=False, index=True)
    index = Column(Integer, nullable=False)
    owner = Column(String(20), nullable=False, default="mine")  # mine / others
    title = Column(Text, default="")
    description = Column(Text, default="")
    priority = Column(String(50))
    assignee = Column(String(255))

    # Populated once the issue tracker accepted the item; never recreated after
    external_issue_id = Column(String(255))
    external_issue_number = Column(Integer)
    created_at = Column(DateTime, server_default=func.now())

    recap = relationship("MeetingRecap", back_populates="action_items")

    __table_args__ = (
        UniqueConstraint("recap_id", "owner", "index", name="uq_action_item_key"),
    )

    @property
    def item_key(self) -> str:
        return f"{self.recap_id}_{self.index}"


# ============================================================================
# DERIVED VIEW
# ============================================================================

class AccountViewRow(Base):
    """One denormalised row per in-scope account ("Account Data Raw")."""
    __tablename__ = "account_view"

    account_id = Column(String(64), primary_key=True)
    position = Column(Integer, nullable=False)
    account_name = Column(String(255), nullable=False)
    opportunity_id = Column(String(64))
    opportunity_name = Column(String(255))
    renewal_link = Column(Text)
    auto_renewal = Column(String(50))

    # Renewal details
    renewal_date = Column(DateTime)
    renewable = Column(String(100))
    forecast_category = Column(String(100))
    status = Column(String(100))
    stage = Column(String(100))
    amount_gross = Column(String(100))
    login_score = Column(String(100))
    audit_usage = Column(String(100))
    journey_usage = Column(String(100))
    forecast = Column(String(100))
    csm = Column(String(255))
    ae = Column(String(255))
    support_type = Column(String(100))

    # Engagement metrics
    engagement_score = Column(Integer, nullable=False, default=0)
    days_since_last_contact = Column(Integer)
    email_total = Column(Integer, default=0)
    emails_sent = Column(Integer, default=0)
    emails_received = Column(Integer, default=0)
    emails_30d = Column(Integer, default=0)
    emails_90d = Column(Integer, default=0)
    last_email_date = Column(DateTime)
    meetings_past = Column(Integer, default=0)
    meetings_future = Column(Integer, default=0)
    meetings_30d = Column(Integer, default=0)
    avg_attendance_pct = Column(Integer, default=0)
    last_meeting_date = Column(DateTime)
    next_meeting_date = Column(DateTime)
    tasks_total = Column(Integer, default=0)
    tasks_open = Column(Integer, default=0)
    tasks_closed = Column(Integer, default=0)
    recaps_count = Column(Integer, default=0)
    action_items_count = Column(Integer, default=0)

    # Text context
    recent_email_snippets = Column(Text, default="")
    recent_task_summaries = Column(Text, default="")
    recent_recap_summaries = Column(Text, default="")

    # Reference id lists
    task_ids = Column(JSON, default=list)
    email_ids = Column(JSON, default=list)
    meeting_ids = Column(JSON, default=list)
    recap_ids = Column(JSON, default=list)
    action_item_ids = Column(JSON, default=list)

    # Downstream cache key and the summary written against it
    content_hash = Column(String(64), nullable=False)
    engagement_summary = Column(Text)
    generated_at = Column(DateTime, nullable=False)


class AccountExclusion(Base):
    """Why an account is not in the view on the last rebuild."""
    __tablename__ = "account_exclusions"

    account_id = Column(String(64), primary_key=True)
    account_name = Column(String(255))
    reason = Column(String(64), nullable=False)
    detail = Column(Text)
    generated_at = Column(DateTime, nullable=False)


class ConsolidationRun(Base):
    """Bookkeeping for each rebuild of the account view."""
    __tablename__ = "consolidation_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    status = Column(String(20), nullable=False, default="running")  # running / completed / failed
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime)
    accounts_included = Column(Integer, default=0)
    accounts_excluded = Column(Integer, default=0)
    newly_active = Column(JSON, default=list)
    error_message = Column(Text)


# ============================================================================
# ACCOUNT NOTES (user-owned, never rebuilt)
# ============================================================================

class AccountNote(Base):
    """Free-form notes per account, one row per account."""
    __tablename__ = "account_notes"

    account_id = Column(String(64), primary_key=True)
    account_name = Column(String(255))
    content = Column(Text, nullable=False, default="")
    last_saved = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<AccountNote(account_id={self.account_id}, last_saved={self.last_saved})>"
