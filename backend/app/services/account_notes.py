"""
Account notes.

One note document per account, upserted on save. Notes belong to the user
and are never touched by a rebuild or a remap.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.errors import InvalidPayloadError
from app.models import Account, AccountNote
from app.services.normalization import utc_now

logger = logging.getLogger(__name__)

# What the rich text editor posts for an empty document
EMPTY_EDITOR_CONTENT = {"", "<p><br></p>"}


def has_content(note: Optional[AccountNote]) -> bool:
    return note is not None and (note.content or "").strip() not in EMPTY_EDITOR_CONTENT


class AccountNotesService:
    """Load and save per-account notes."""

    def __init__(self, db: Session):
        self.db = db

    def load(self, account_id: str) -> Dict[str, Any]:
        """Note content and last save time; empty content when none was saved."""
        if not account_id:
            raise InvalidPayloadError("Account ID is required")

        note = self.db.get(AccountNote, account_id)
        if note is None:
            return {"account_id": account_id, "content": "", "last_saved": None}
        return {"account_id": account_id, "content": note.content or "", "last_saved": note.last_saved}

    def save(self, account_id: str, content: str, account_name: Optional[str] = None) -> AccountNote:
        """
        Create or replace the account's note.

        Args:
            account_id: account the note belongs to
            content: full note document, replaces the stored one
            account_name: display name; taken from the account when omitted

        Returns:
            The stored AccountNote with last_saved set to now
        """
        if not account_id:
            raise InvalidPayloadError("Account ID is required")

        if not account_name:
            account = self.db.get(Account, account_id)
            account_name = account.name if account else None

        note = self.db.get(AccountNote, account_id)
        created = note is None
        if created:
            note = AccountNote(account_id=account_id)
            self.db.add(note)

        note.account_name = account_name
        note.content = content or ""
        note.last_saved = utc_now()

        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"{'Created' if created else 'Updated'} notes for {account_name} ({account_id})")
        return note

    def list_accounts(self) -> List[Dict[str, Any]]:
        """Active accounts sorted by name, flagged when they have a non-empty note."""
        with_notes = {
            note.account_id for note in self.db.query(AccountNote).all() if has_content(note)
        }
        accounts = (
            self.db.query(Account)
            .filter(Account.is_active.is_(True))
            .order_by(Account.name)
            .all()
        )
        logger.debug(f"Found {len(accounts)} active accounts for notes")
        return [
            {"id": a.id, "name": a.name, "has_notes": a.id in with_notes}
            for a in accounts
        ]
