"""
Consolidation Writer

Turns reconciled account views into denormalised rows and replaces the
published view in a single transaction. A failed rebuild leaves the previous
view untouched.
"""

import hashlib
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.models import Account, AccountViewRow, AccountExclusion, ConsolidationRun
from app.services.engagement import EngagementScorer, open_tasks
from app.services.entity_store import load_snapshot
from app.services.normalization import utc_now
from app.services.reconciliation import AccountView, ReconciliationEngine

logger = logging.getLogger(__name__)

EMAIL_SNIPPET_COUNT = 3
RECAP_SNIPPET_COUNT = 2
SUBJECT_LENGTH = 80
PREVIEW_LENGTH = 150


# ============================================================================
# ROW BUILDING
# ============================================================================

def _day(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d") if value else ""


def email_snippets(view: AccountView, scorer: EngagementScorer) -> str:
    lines = []
    for email in view.emails[:EMAIL_SNIPPET_COUNT]:
        direction = "OUT" if scorer.is_outbound(email) else "IN"
        subject = (email.subject or "")[:SUBJECT_LENGTH]
        preview = (email.body_preview or "")[:PREVIEW_LENGTH]
        lines.append(f"{_day(email.date)} ({direction}): {subject} - {preview}")
    return "\n".join(lines)


def task_summaries(view: AccountView) -> str:
    return "\n".join(
        f"[OPEN] {task.title or ''} ({task.status or 'No status'})"
        for task in open_tasks(view.tasks)
    )


def recap_summaries(view: AccountView) -> str:
    return "\n---\n".join(
        f"{_day(recap.start)}: {recap.title or ''}\n{recap.summary or ''}"
        for recap in view.recaps[:RECAP_SNIPPET_COUNT]
    )


def content_hash(row: Dict[str, Any]) -> str:
    """
    SHA-256 over the fields that should invalidate a downstream summary.

    Counters that drift daily (emails_30d, days since contact) are not part
    of the hash.
    """
    payload = {
        "recent_email_snippets": row.get("recent_email_snippets") or "",
        "recent_task_summaries": row.get("recent_task_summaries") or "",
        "recent_recap_summaries": row.get("recent_recap_summaries") or "",
        "engagement_score": row.get("engagement_score"),
        "tasks_open": row.get("tasks_open"),
        "meetings_future": row.get("meetings_future"),
        "next_meeting_date": row["next_meeting_date"].isoformat() if row.get("next_meeting_date") else None,
        "recaps_count": row.get("recaps_count"),
        "action_items_count": row.get("action_items_count"),
        "stage": row.get("stage") or "",
        "csm": row.get("csm") or "",
    }
    encoded = json.dumps(payload, sort_keys=True, ensure_ascii=False).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def build_row(view: AccountView, scorer: EngagementScorer, position: int, generated_at: datetime) -> Dict[str, Any]:
    """Flatten one AccountView into AccountViewRow column values."""
    account, opportunity, renewal = view.account, view.opportunity, view.renewal

    row = {
        "account_id": account.id,
        "position": position,
        "account_name": account.name,
        "opportunity_id": opportunity.id,
        "opportunity_name": opportunity.name,
        "renewal_link": renewal.link,
        "auto_renewal": account.auto_renewal,
        "renewal_date": renewal.renewal_date,
        "renewable": renewal.renewable,
        "forecast_category": renewal.forecast_category,
        "status": renewal.status,
        "stage": renewal.stage,
        "amount_gross": renewal.amount_gross,
        "login_score": renewal.login_score,
        "audit_usage": renewal.audit_usage,
        "journey_usage": renewal.journey_usage,
        "forecast": renewal.forecast,
        "csm": renewal.csm,
        "ae": renewal.ae,
        "support_type": renewal.support_type,
        "recent_email_snippets": email_snippets(view, scorer),
        "recent_task_summaries": task_summaries(view),
        "recent_recap_summaries": recap_summaries(view),
        "task_ids": [t.task_id for t in view.tasks],
        "email_ids": [e.message_id for e in view.emails],
        "meeting_ids": [m.event_id for m in view.meetings],
        "recap_ids": [r.recap_id for r in view.recaps],
        "action_item_ids": [i.item_key for i in view.action_items],
        "generated_at": generated_at,
    }
    row.update(view.metrics.to_dict())
    row["content_hash"] = content_hash(row)
    return row


# ============================================================================
# WRITER
# ============================================================================

class ConsolidationWriter:
    """Rebuilds the account view table from the current source tables."""

    def __init__(self, db: Session, scorer: Optional[EngagementScorer] = None):
        self.db = db
        self.scorer = scorer or EngagementScorer()

    def rebuild(self, now: Optional[datetime] = None) -> ConsolidationRun:
        """
        Full clear-and-rewrite of the view, exclusions and account flags.

        Returns:
            The ConsolidationRun record (status completed or failed)

        Raises:
            ConfigurationError: a required table is missing (run marked failed)
        """
        now = now or utc_now()

        run = ConsolidationRun(status="running", started_at=now)
        self.db.add(run)
        self.db.commit()

        logger.info("=" * 60)
        logger.info(f"Account view rebuild #{run.id} started")
        logger.info("=" * 60)

        try:
            snapshot = load_snapshot(self.db)
            engine = ReconciliationEngine(snapshot, scorer=self.scorer)
            result = engine.build_account_view(now=now)

            previous = {
                row.account_id: (row.content_hash, row.engagement_summary)
                for row in self.db.query(AccountViewRow).all()
            }

            rows = [
                build_row(view, self.scorer, position, now)
                for position, view in enumerate(result.views, start=1)
            ]

            carried = 0
            for row in rows:
                old_hash, old_summary = previous.get(row["account_id"], (None, None))
                if old_hash == row["content_hash"] and old_summary:
                    row["engagement_summary"] = old_summary
                    carried += 1

            included_ids = {row["account_id"] for row in rows}
            newly_active = [row["account_id"] for row in rows if row["account_id"] not in previous]

            self.db.query(AccountViewRow).delete()
            self.db.query(AccountExclusion).delete()
            self.db.add_all([AccountViewRow(**row) for row in rows])
            self.db.add_all([
                AccountExclusion(
                    account_id=ex.account_id,
                    account_name=ex.account_name,
                    reason=ex.reason,
                    detail=ex.detail,
                    generated_at=now
                )
                for ex in result.exclusions
            ])

            for account in snapshot.accounts:
                account.is_active = account.id in included_ids

            run.status = "completed"
            run.completed_at = utc_now()
            run.accounts_included = len(rows)
            run.accounts_excluded = len(result.exclusions)
            run.newly_active = newly_active
            self.db.commit()

        except Exception as e:
            self.db.rollback()
            logger.error(f"Account view rebuild #{run.id} failed: {e}")
            self._mark_failed(run.id, str(e))
            raise

        logger.info(
            f"Rebuild #{run.id} complete: {run.accounts_included} included, "
            f"{run.accounts_excluded} excluded, {len(newly_active)} newly active, "
            f"{carried} summaries carried forward"
        )
        return run

    def _mark_failed(self, run_id: int, message: str):
        run = self.db.get(ConsolidationRun, run_id)
        if run is None:
            return
        run.status = "failed"
        run.completed_at = utc_now()
        run.error_message = message
        self.db.commit()

    def record_summary(self, account_id: str, summary: str, expected_hash: str) -> bool:
        """
        Store a downstream-generated summary against a row.

        Only accepted when the hash matches the row's current content hash,
        so a summary is never attached to content it was not written for.
        """
        row = self.db.get(AccountViewRow, account_id)
        if row is None or row.content_hash != expected_hash:
            return False
        row.engagement_summary = summary
        self.db.commit()
        return True


def list_view(db: Session) -> List[AccountViewRow]:
    return db.query(AccountViewRow).order_by(AccountViewRow.position).all()


def list_exclusions(db: Session) -> List[AccountExclusion]:
    return db.query(AccountExclusion).order_by(AccountExclusion.reason, AccountExclusion.account_id).all()


def newly_active_accounts(db: Session) -> List[Account]:
    """Accounts that joined the view on the last completed run."""
    run = (
        db.query(ConsolidationRun)
        .filter(ConsolidationRun.status == "completed")
        .order_by(ConsolidationRun.id.desc())
        .first()
    )
    if run is None or not run.newly_active:
        return []
    return db.query(Account).filter(Account.id.in_(run.newly_active)).all()
