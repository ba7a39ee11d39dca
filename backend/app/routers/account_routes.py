"""
Account routes - per-account notes.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.models import Account
from app.schemas.account_view import AccountNoteResponse, AccountNoteUpdate, NotesAccount
from app.services.account_notes import AccountNotesService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/accounts", tags=["Accounts"])


def _require_account(db: Session, account_id: str) -> Account:
    account = db.get(Account, account_id)
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Account {account_id} not found"
        )
    return account


@router.get("/notes", response_model=List[NotesAccount])
def list_note_accounts(db: Session = Depends(get_db)):
    """Active accounts with a flag for existing notes."""
    return AccountNotesService(db).list_accounts()


@router.get("/{account_id}/notes", response_model=AccountNoteResponse)
def get_account_notes(account_id: str, db: Session = Depends(get_db)):
    _require_account(db, account_id)
    return AccountNotesService(db).load(account_id)


@router.put("/{account_id}/notes", response_model=AccountNoteResponse)
def save_account_notes(account_id: str, update: AccountNoteUpdate, db: Session = Depends(get_db)):
    """Replace the account's notes; last_saved is set by the server."""
    account = _require_account(db, account_id)
    note = AccountNotesService(db).save(account_id, update.content, update.account_name or account.name)
    return {"account_id": note.account_id, "content": note.content, "last_saved": note.last_saved}
