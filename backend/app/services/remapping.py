"""
Remapping maintenance.

Account references on e-mails, events, recaps and tasks are derived values.
After the domain mapping or the account feed changes they are recomputed
here from the current tables.
"""

import logging
from collections import Counter
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.models import Account, ActionItem, EmailMessage, CalendarEvent, MeetingRecap, Task
from app.services.domain_mapper import DomainMapper
from app.services.source_ingestion import account_name_from_labels, accounts_by_name, attendee_emails

logger = logging.getLogger(__name__)


@dataclass
class RunCounters:
    fixed: int = 0
    unchanged: int = 0
    unresolved: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class RemappingService:
    """Re-resolves derived account ids from the current domain mapping."""

    def __init__(self, db: Session, mapper: Optional[DomainMapper] = None):
        self.db = db
        self.mapper = mapper or DomainMapper.from_db(db)

    def _apply(self, counters: RunCounters, record, new_values: Dict[str, Any]):
        changed = any(getattr(record, key) != value for key, value in new_values.items())
        if changed:
            for key, value in new_values.items():
                setattr(record, key, value)
            counters.fixed += 1
        else:
            counters.unchanged += 1
        if new_values.get("account_id") is None:
            counters.unresolved += 1

    def _commit(self, label: str, counters: RunCounters) -> RunCounters:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"Remapped {label}: {counters.to_dict()}")
        return counters

    def remap_emails(self) -> RunCounters:
        counters = RunCounters()
        for email in self.db.query(EmailMessage).all():
            match = self.mapper.resolve_first(email.from_address, email.to_addresses, email.cc_addresses)
            self._apply(counters, email, {
                "account_id": match.account_id if match else None,
                "account_name": match.account_name if match else None,
            })
        return self._commit("emails", counters)

    def remap_calendar_events(self) -> RunCounters:
        counters = RunCounters()
        for event in self.db.query(CalendarEvent).all():
            match = self.mapper.resolve_first(attendee_emails(event.attendees))
            self._apply(counters, event, {"account_id": match.account_id if match else None})
        return self._commit("calendar events", counters)

    def remap_recaps(self, overwrite: bool = False) -> RunCounters:
        """
        Resolve recaps from their attendees.

        Recaps that already carry an account are left alone unless
        overwrite is set.
        """
        counters = RunCounters()
        for recap in self.db.query(MeetingRecap).all():
            if recap.account_id and not overwrite:
                counters.unchanged += 1
                continue
            match = self.mapper.resolve_first(recap.actual_attendees, recap.invited_attendees)
            self._apply(counters, recap, {
                "account_id": match.account_id if match else None,
                "account_name": match.account_name if match else None,
                "mapped_domain": match.domain if match else None,
            })
        return self._commit("recaps", counters)

    def remap_tasks(self) -> RunCounters:
        counters = RunCounters()
        by_name = accounts_by_name(self.db)
        for task in self.db.query(Task).all():
            name = account_name_from_labels(task.labels)
            account = by_name.get(name) if name else None
            self._apply(counters, task, {
                "account_id": account.id if account else None,
                "account_name": name,
            })
        return self._commit("tasks", counters)

    def remap_all(self, overwrite: bool = False) -> Dict[str, Dict[str, int]]:
        return {
            "emails": self.remap_emails().to_dict(),
            "calendar_events": self.remap_calendar_events().to_dict(),
            "recaps": self.remap_recaps(overwrite=overwrite).to_dict(),
            "tasks": self.remap_tasks().to_dict(),
        }

    def unmapped_domains(self) -> List[Dict[str, Any]]:
        """External domains seen in recaps and e-mails with no mapping, most frequent first."""
        occurrences = Counter()

        for recap in self.db.query(MeetingRecap).all():
            for domain in self.mapper.unmapped_domains(recap.external_attendees or []):
                occurrences[domain] += 1

        for email in self.db.query(EmailMessage).all():
            addresses = [email.from_address or ""] + list(email.to_addresses or []) + list(email.cc_addresses or [])
            for domain in self.mapper.unmapped_domains(addresses):
                occurrences[domain] += 1

        return [
            {"domain": domain, "occurrences": count}
            for domain, count in sorted(occurrences.items(), key=lambda kv: (-kv[1], kv[0]))
        ]

    def find_orphaned_records(self) -> Dict[str, List[str]]:
        """
        Records pointing at an account id the Accounts table does not know.

        Action items carry no account of their own; they are orphaned with
        their recap. Records without an account id are unresolved, not
        orphaned, and are not listed.
        """
        valid_ids = {account_id for (account_id,) in self.db.query(Account.id).all()}

        def orphaned(records, key):
            return sorted(
                getattr(r, key) for r in records
                if r.account_id and r.account_id not in valid_ids
            )

        orphans = {
            "emails": orphaned(self.db.query(EmailMessage).all(), "message_id"),
            "calendar_events": orphaned(self.db.query(CalendarEvent).all(), "event_id"),
            "tasks": orphaned(self.db.query(Task).all(), "task_id"),
            "recaps": orphaned(self.db.query(MeetingRecap).all(), "recap_id"),
        }
        orphaned_recaps = set(orphans["recaps"])
        orphans["action_items"] = sorted({
            item.item_key
            for item in self.db.query(ActionItem).all()
            if item.recap_id in orphaned_recaps
        })

        total = sum(len(ids) for ids in orphans.values())
        if total:
            counts = ", ".join(f"{len(ids)} {kind}" for kind, ids in orphans.items() if ids)
            logger.warning(f"Found {total} orphaned records: {counts}")
        return orphans
