"""Financial diary API routes"""
import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.security import require_auth
from app.db.session import get_db
from app.schemas.diary import DiaryEntryCreate
from app.services.diary_service import list_entries, create_entry, delete_entry
from app.services.insights_service import InsightUnavailable

router = APIRouter(prefix="/api/diary", tags=["diary"])
logger = logging.getLogger(__name__)


@router.get("")
def get_entries(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """List diary entries, newest first"""
    return list_entries(user_id, db)


@router.post("", status_code=201)
def add_entry(request_data: DiaryEntryCreate, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Write a diary entry and get Rumina's reply"""
    try:
        return create_entry(user_id, request_data.content, db, mood=request_data.mood)
    except InsightUnavailable as e:
        logger.error(f"Diary reply failed for user {user_id}: {e}")
        raise HTTPException(502, "Failed to create diary entry")


@router.delete("/{entry_id}")
def remove_entry(entry_id: int, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Delete a diary entry (ownership verified)"""
    try:
        delete_entry(user_id, entry_id, db)
    except ValueError as e:
        raise HTTPException(403, str(e))
    return {"success": True}
