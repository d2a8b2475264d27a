"""Financial diary service"""
import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from app.models.diary_entry import DiaryEntry
from app.services.insights_service import generate_diary_response

logger = logging.getLogger(__name__)

DEFAULT_MOOD = "Neutral"
NOT_FOUND_MESSAGE = "Not authorized or not found"


def serialize_entry(entry: DiaryEntry) -> Dict:
    return {
        "id": entry.id,
        "userId": entry.user_id,
        "mood": entry.mood,
        "content": entry.content,
        "aiInsight": entry.ai_insight,
        "createdAt": entry.created_at.isoformat() if entry.created_at else None,
    }


def list_entries(user_id: int, db: Session) -> List[Dict]:
    entries = (
        db.query(DiaryEntry)
        .filter(DiaryEntry.user_id == user_id)
        .order_by(DiaryEntry.created_at.desc(), DiaryEntry.id.desc())
        .all()
    )
    return [serialize_entry(e) for e in entries]


def create_entry(user_id: int, content: str, db: Session, mood: Optional[str] = None) -> Dict:
    """Store a diary entry together with the assistant's reply

    Raises:
        InsightUnavailable: If no reply could be generated; nothing is stored
    """
    reply = generate_diary_response(content)
    entry = DiaryEntry(user_id=user_id, mood=mood or DEFAULT_MOOD, content=content, ai_insight=reply)
    db.add(entry)
    db.commit()
    db.refresh(entry)
    logger.info(f"Created diary entry {entry.id} for user {user_id}")
    return serialize_entry(entry)


def delete_entry(user_id: int, entry_id: int, db: Session) -> None:
    """Delete one of the user's entries

    Raises:
        ValueError: If the entry does not exist or belongs to someone else
    """
    entry = db.query(DiaryEntry).filter(DiaryEntry.id == entry_id).first()
    if not entry or entry.user_id != user_id:
        raise ValueError(NOT_FOUND_MESSAGE)
    db.delete(entry)
    db.commit()
