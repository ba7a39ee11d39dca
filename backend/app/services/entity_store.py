"""
Entity store snapshot.

Reads every source table once into an in-memory snapshot that the
reconciliation engine, scorer and matcher work on. Downstream code never
queries the database mid-run.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from app.errors import ConfigurationError
from app.models import (
    Account, Opportunity, RenewalRecord, DomainMapping, EmailMessage,
    CalendarEvent, Task, MeetingRecap, ActionItem
)

logger = logging.getLogger(__name__)

REQUIRED_MODELS = (Account, Opportunity, RenewalRecord)


@dataclass(frozen=True)
class EntitySnapshot:
    accounts: List[Account]
    opportunities: List[Opportunity]
    renewals: List[RenewalRecord]
    domain_mappings: List[DomainMapping] = field(default_factory=list)
    emails: List[EmailMessage] = field(default_factory=list)
    events: List[CalendarEvent] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)
    recaps: List[MeetingRecap] = field(default_factory=list)
    action_items: List[ActionItem] = field(default_factory=list)

    def summary(self) -> Dict[str, int]:
        return {
            "accounts": len(self.accounts),
            "opportunities": len(self.opportunities),
            "renewals": len(self.renewals),
            "domain_mappings": len(self.domain_mappings),
            "emails": len(self.emails),
            "events": len(self.events),
            "tasks": len(self.tasks),
            "recaps": len(self.recaps),
            "action_items": len(self.action_items),
        }


def _existing_tables(db: Session) -> set:
    return set(inspect(db.get_bind()).get_table_names())


def load_snapshot(db: Session) -> EntitySnapshot:
    """
    Load all source tables.

    Raises:
        ConfigurationError: accounts, opportunities or renewals table missing
    """
    tables = _existing_tables(db)

    missing = [m.__tablename__ for m in REQUIRED_MODELS if m.__tablename__ not in tables]
    if missing:
        raise ConfigurationError(f"Required table(s) missing: {', '.join(missing)}")

    def optional(model):
        if model.__tablename__ not in tables:
            logger.warning(f"Table {model.__tablename__} not found, treating as empty")
            return []
        return db.query(model).all()

    snapshot = EntitySnapshot(
        accounts=db.query(Account).order_by(Account.id).all(),
        opportunities=db.query(Opportunity).all(),
        renewals=db.query(RenewalRecord).all(),
        domain_mappings=optional(DomainMapping),
        emails=optional(EmailMessage),
        events=optional(CalendarEvent),
        tasks=optional(Task),
        recaps=optional(MeetingRecap),
        action_items=optional(ActionItem),
    )

    logger.info(f"Loaded snapshot: {snapshot.summary()}")
    return snapshot
