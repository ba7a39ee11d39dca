"""
Source ingestion for e-mails, calendar events and tasks.

message_id / event_id / task_id are the idempotency keys. E-mails are
append-only (a known id is skipped); events and tasks are refreshed in place.
Account ids are resolved here and can be recomputed later by remapping.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.models import Account, EmailMessage, CalendarEvent, Task
from app.services.domain_mapper import DomainMapper
from app.services.normalization import normalization_service as norm

logger = logging.getLogger(__name__)


@dataclass
class IngestionStats:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    invalid: int = 0
    unresolved: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def account_name_from_labels(labels: Optional[Iterable[str]]) -> Optional[str]:
    """Account name from the first account:<name> label."""
    prefix = settings.ACCOUNT_LABEL_PREFIX
    for label in labels or []:
        if label and label.startswith(prefix):
            name = label[len(prefix):].strip()
            if name:
                return name
    return None


def accounts_by_name(db: Session) -> Dict[str, Account]:
    lookup = {}
    for account in db.query(Account).order_by(Account.id).all():
        if account.name:
            lookup.setdefault(account.name, account)
    return lookup


def attendee_emails(attendees: Optional[List[Dict[str, Any]]]) -> List[str]:
    return [a.get("email", "") for a in attendees or [] if a.get("email")]


class SourceIngestionService:
    """Writes source records into the entity store."""

    def __init__(self, db: Session, mapper: Optional[DomainMapper] = None):
        self.db = db
        self.mapper = mapper or DomainMapper.from_db(db)

    # ========================================================================
    # EMAILS
    # ========================================================================

    def ingest_emails(self, records: List[Dict[str, Any]]) -> IngestionStats:
        """Insert new e-mails; an already-stored message_id is a no-op."""
        stats = IngestionStats()
        known = {row[0] for row in self.db.query(EmailMessage.message_id).all()}

        try:
            for record in records:
                message_id = norm.clean_text(record.get("message_id"))
                if not message_id:
                    stats.invalid += 1
                    continue
                if message_id in known:
                    stats.skipped += 1
                    continue
                known.add(message_id)

                from_address = norm.clean_text(record.get("from_address"))
                to_addresses = norm.split_addresses(record.get("to_addresses"))
                cc_addresses = norm.split_addresses(record.get("cc_addresses"))

                match = self.mapper.resolve_first(from_address, to_addresses, cc_addresses)
                if match is None:
                    stats.unresolved += 1

                self.db.add(EmailMessage(
                    message_id=message_id,
                    date=norm.parse_datetime(record.get("date")),
                    from_address=from_address,
                    to_addresses=to_addresses,
                    cc_addresses=cc_addresses,
                    subject=norm.clean_text(record.get("subject")),
                    body_preview=norm.clean_text(record.get("body_preview")),
                    thread_id=record.get("thread_id"),
                    account_id=match.account_id if match else None,
                    account_name=match.account_name if match else None,
                ))
                stats.created += 1

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Email ingestion: {stats.to_dict()}")
        return stats

    # ========================================================================
    # CALENDAR EVENTS
    # ========================================================================

    def ingest_calendar_events(self, records: List[Dict[str, Any]]) -> IngestionStats:
        """Upsert events by event_id. meeting_recap_id belongs to the matcher and is not touched."""
        stats = IngestionStats()
        existing = {e.event_id: e for e in self.db.query(CalendarEvent).all()}

        try:
            for record in records:
                event_id = norm.clean_text(record.get("event_id"))
                if not event_id:
                    stats.invalid += 1
                    continue

                attendees = [
                    {
                        "email": norm.normalize_email(a.get("email")),
                        "name": a.get("name") or "",
                        "status": (a.get("status") or "").upper(),
                    }
                    for a in record.get("attendees") or []
                ]
                match = self.mapper.resolve_first(attendee_emails(attendees))
                if match is None:
                    stats.unresolved += 1

                event = existing.get(event_id)
                if event is None:
                    event = CalendarEvent(event_id=event_id)
                    self.db.add(event)
                    existing[event_id] = event
                    stats.created += 1
                else:
                    stats.updated += 1

                event.title = norm.clean_text(record.get("title"))
                event.start = norm.parse_datetime(record.get("start"))
                event.end = norm.parse_datetime(record.get("end"))
                event.location = record.get("location")
                event.description = record.get("description")
                event.is_all_day = bool(record.get("is_all_day", False))
                event.attendees = attendees
                event.account_id = match.account_id if match else None

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Calendar ingestion: {stats.to_dict()}")
        return stats

    # ========================================================================
    # TASKS
    # ========================================================================

    def ingest_tasks(self, records: List[Dict[str, Any]]) -> IngestionStats:
        """Upsert tasks by task_id; account comes from the account label."""
        stats = IngestionStats()
        existing = {t.task_id: t for t in self.db.query(Task).all()}
        by_name = accounts_by_name(self.db)

        try:
            for record in records:
                task_id = norm.clean_text(record.get("task_id"))
                if not task_id:
                    stats.invalid += 1
                    continue

                labels = list(record.get("labels") or [])
                account_name = account_name_from_labels(labels)
                account = by_name.get(account_name) if account_name else None
                if account is None:
                    stats.unresolved += 1

                task = existing.get(task_id)
                if task is None:
                    task = Task(task_id=task_id)
                    self.db.add(task)
                    existing[task_id] = task
                    stats.created += 1
                else:
                    stats.updated += 1

                task.number = record.get("number")
                task.title = norm.clean_text(record.get("title"))
                task.description = record.get("description")
                task.state = (record.get("state") or "OPEN").upper()
                task.status = record.get("status")
                task.priority = record.get("priority")
                task.url = record.get("url")
                task.labels = labels
                task.account_id = account.id if account else None
                task.account_name = account_name
                task.created_at = norm.parse_datetime(record.get("created_at"))
                task.updated_at = norm.parse_datetime(record.get("updated_at"))
                task.closed_at = norm.parse_datetime(record.get("closed_at"))

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Task ingestion: {stats.to_dict()}")
        return stats
