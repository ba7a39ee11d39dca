"""
Reconciliation Engine

Joins accounts to the active renewal set and aggregates every source table
per account. Works on an EntitySnapshot only; nothing here writes.

Accounts that fail a join are returned as exclusions with a reason instead of
being dropped.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from app.config import settings
from app.models import (
    Account, Opportunity, RenewalRecord, EmailMessage, CalendarEvent,
    Task, MeetingRecap, ActionItem
)
from app.services.engagement import EngagementScorer, EngagementMetrics
from app.services.entity_store import EntitySnapshot
from app.services.normalization import utc_now

logger = logging.getLogger(__name__)


# Exclusion reasons
MISSING_NEXT_RENEWAL = "missing_next_renewal_opportunity"
OPPORTUNITY_NOT_FOUND = "opportunity_not_found"
NOT_IN_RENEWAL_FEED = "not_in_renewal_feed"


@dataclass
class AccountView:
    """One in-scope account with its aggregates and metrics."""
    account: Account
    opportunity: Opportunity
    renewal: RenewalRecord
    emails: List[EmailMessage] = field(default_factory=list)
    meetings: List[CalendarEvent] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)
    recaps: List[MeetingRecap] = field(default_factory=list)
    action_items: List[ActionItem] = field(default_factory=list)
    metrics: EngagementMetrics = field(default_factory=EngagementMetrics)

    @property
    def account_id(self) -> str:
        return self.account.id


@dataclass
class Exclusion:
    account_id: str
    account_name: Optional[str]
    reason: str
    detail: str


@dataclass
class ReconciliationResult:
    views: List[AccountView]
    exclusions: List[Exclusion]
    generated_at: datetime


class ReconciliationEngine:
    """Builds the account view from a snapshot."""

    def __init__(
        self,
        snapshot: EntitySnapshot,
        scorer: Optional[EngagementScorer] = None,
        email_cap: Optional[int] = None,
        past_meeting_cap: Optional[int] = None,
        future_meeting_cap: Optional[int] = None
    ):
        self.snapshot = snapshot
        self.scorer = scorer or EngagementScorer()
        self.email_cap = email_cap if email_cap is not None else settings.EMAIL_CAP_PER_ACCOUNT
        self.past_meeting_cap = past_meeting_cap if past_meeting_cap is not None else settings.PAST_MEETING_CAP
        self.future_meeting_cap = future_meeting_cap if future_meeting_cap is not None else settings.FUTURE_MEETING_CAP

        self.opportunities_by_id: Dict[str, Opportunity] = {o.id: o for o in snapshot.opportunities}
        self.opportunity_ids_by_name: Dict[str, str] = {}
        for opp in sorted(snapshot.opportunities, key=lambda o: o.id):
            self.opportunity_ids_by_name.setdefault(opp.name, opp.id)

        self.active_by_id, self.active_by_name = self._build_active_set()

    # ========================================================================
    # STEP 1: ACTIVE OPPORTUNITY SET
    # ========================================================================

    def _build_active_set(self) -> Tuple[Dict[str, RenewalRecord], Dict[str, RenewalRecord]]:
        by_id: Dict[str, RenewalRecord] = {}
        by_name: Dict[str, RenewalRecord] = {}
        for renewal in self.snapshot.renewals:
            by_name.setdefault(renewal.opportunity_name, renewal)
            opp_id = renewal.opportunity_id or self.opportunity_ids_by_name.get(renewal.opportunity_name)
            if opp_id:
                by_id.setdefault(opp_id, renewal)
        logger.info(f"Active opportunity set: {len(by_name)} renewals, {len(by_id)} resolved to ids")
        return by_id, by_name

    # ========================================================================
    # STEP 2: ACCOUNT JOIN
    # ========================================================================

    def join_account(self, account: Account):
        """
        Resolve an account to its active opportunity and renewal.

        Returns:
            (opportunity, renewal, None) on success, or (None, None, Exclusion)
        """
        opp_id = account.next_renewal_opportunity_id
        if not opp_id:
            return None, None, Exclusion(
                account.id, account.name, MISSING_NEXT_RENEWAL,
                "Account has no next renewal opportunity id"
            )

        opportunity = self.opportunities_by_id.get(opp_id)
        if opportunity is None:
            return None, None, Exclusion(
                account.id, account.name, OPPORTUNITY_NOT_FOUND,
                f"Opportunity {opp_id} is not in the opportunity feed"
            )

        renewal = self.active_by_id.get(opportunity.id) or self.active_by_name.get(opportunity.name)
        if renewal is None:
            return None, None, Exclusion(
                account.id, account.name, NOT_IN_RENEWAL_FEED,
                f"Opportunity '{opportunity.name}' ({opportunity.id}) is not in the renewal feed"
            )

        return opportunity, renewal, None

    # ========================================================================
    # STEP 3: AGGREGATION
    # ========================================================================

    def _group(self, items, key) -> Dict[str, list]:
        grouped = defaultdict(list)
        for item in items:
            account_id = key(item)
            if account_id:
                grouped[account_id].append(item)
        return grouped

    def _cap_emails(self, emails: List[EmailMessage]) -> List[EmailMessage]:
        ordered = sorted(emails, key=lambda e: (e.date is not None, e.date or datetime.min), reverse=True)
        return ordered[:self.email_cap]

    def _cap_meetings(self, events: List[CalendarEvent], now: datetime) -> List[CalendarEvent]:
        dated = [e for e in events if e.start is not None]
        past = sorted([e for e in dated if e.start < now], key=lambda e: e.start, reverse=True)
        future = sorted([e for e in dated if e.start >= now], key=lambda e: e.start)
        return past[:self.past_meeting_cap] + future[:self.future_meeting_cap]

    # ========================================================================
    # BUILD
    # ========================================================================

    def build_account_view(self, now: Optional[datetime] = None) -> ReconciliationResult:
        """Run all steps and return views sorted by renewal date."""
        now = now or utc_now()
        snapshot = self.snapshot

        emails_by_account = self._group(snapshot.emails, lambda e: e.account_id)
        events_by_account = self._group(snapshot.events, lambda e: e.account_id)
        tasks_by_account = self._group(snapshot.tasks, lambda t: t.account_id)
        recaps_by_account = self._group(snapshot.recaps, lambda r: r.account_id)

        # Action items are attributed through their recap
        recap_accounts = {r.recap_id: r.account_id for r in snapshot.recaps}
        items_by_account = self._group(
            [i for i in snapshot.action_items if (i.owner or "mine") == "mine"],
            lambda i: recap_accounts.get(i.recap_id)
        )

        views: List[AccountView] = []
        exclusions: List[Exclusion] = []

        for account in snapshot.accounts:
            opportunity, renewal, exclusion = self.join_account(account)
            if exclusion:
                logger.debug(f"Excluded {account.id}: {exclusion.reason}")
                exclusions.append(exclusion)
                continue

            view = AccountView(
                account=account,
                opportunity=opportunity,
                renewal=renewal,
                emails=self._cap_emails(emails_by_account.get(account.id, [])),
                meetings=self._cap_meetings(events_by_account.get(account.id, []), now),
                tasks=list(tasks_by_account.get(account.id, [])),
                recaps=sorted(
                    recaps_by_account.get(account.id, []),
                    key=lambda r: (r.start is not None, r.start or datetime.min),
                    reverse=True
                ),
                action_items=sorted(
                    items_by_account.get(account.id, []),
                    key=lambda i: (i.recap_id, i.index)
                ),
            )
            view.metrics = self.scorer.score(
                view.emails, view.meetings, view.tasks, view.recaps, view.action_items, now=now
            )
            views.append(view)

        views.sort(key=_renewal_sort_key)

        logger.info(f"Reconciliation: {len(views)} accounts in view, {len(exclusions)} excluded")
        return ReconciliationResult(views=views, exclusions=exclusions, generated_at=now)


def _renewal_sort_key(view: AccountView):
    renewal_date = view.renewal.renewal_date
    return (
        renewal_date is None,
        renewal_date or datetime.max,
        (view.account.name or "").lower(),
        view.account.id,
    )


def build_account_view(snapshot: EntitySnapshot, now: Optional[datetime] = None) -> ReconciliationResult:
    return ReconciliationEngine(snapshot).build_account_view(now=now)


def explain_account(snapshot: EntitySnapshot, account_id: str) -> Dict[str, Any]:
    """
    Step-by-step join status for one account.

    Returns a dict with each join step, the final decision and the
    number of source records resolved to the account.
    """
    account = next((a for a in snapshot.accounts if a.id == account_id), None)
    if account is None:
        return {"account_id": account_id, "found": False, "included": False, "steps": []}

    engine = ReconciliationEngine(snapshot)
    steps = []

    opp_id = account.next_renewal_opportunity_id
    steps.append({"step": "next_renewal_opportunity_id", "ok": bool(opp_id), "value": opp_id})

    opportunity = engine.opportunities_by_id.get(opp_id) if opp_id else None
    steps.append({
        "step": "opportunity_lookup",
        "ok": opportunity is not None,
        "value": opportunity.name if opportunity else None,
    })

    renewal = None
    if opportunity is not None:
        renewal = engine.active_by_id.get(opportunity.id) or engine.active_by_name.get(opportunity.name)
    steps.append({
        "step": "renewal_feed",
        "ok": renewal is not None,
        "value": renewal.opportunity_name if renewal else None,
    })

    _, _, exclusion = engine.join_account(account)
    recap_ids = {r.recap_id for r in snapshot.recaps if r.account_id == account_id}

    return {
        "account_id": account.id,
        "account_name": account.name,
        "found": True,
        "included": exclusion is None,
        "reason": exclusion.reason if exclusion else None,
        "detail": exclusion.detail if exclusion else None,
        "steps": steps,
        "source_counts": {
            "emails": len([e for e in snapshot.emails if e.account_id == account_id]),
            "events": len([e for e in snapshot.events if e.account_id == account_id]),
            "tasks": len([t for t in snapshot.tasks if t.account_id == account_id]),
            "recaps": len(recap_ids),
            "action_items": len([i for i in snapshot.action_items if i.recap_id in recap_ids]),
        },
    }
