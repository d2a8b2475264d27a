"""Savings goals API routes"""
import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.security import require_auth
from app.db.session import get_db
from app.schemas.goals import GoalCreate, GoalProgressUpdate
from app.services.goal_service import (
    list_goals_with_insight, create_goal, update_goal_progress, delete_goal
)

router = APIRouter(prefix="/api/goals", tags=["goals"])
logger = logging.getLogger(__name__)


@router.get("")
def get_goals(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """List goals with Rumina's progress insight"""
    return {"success": True, "data": list_goals_with_insight(user_id, db)}


@router.post("", status_code=201)
def add_goal(request_data: GoalCreate, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Create a goal"""
    return create_goal(
        user_id,
        request_data.title,
        request_data.target_amount,
        db,
        category=request_data.category,
        target_date=request_data.target_date,
    )


@router.patch("/{goal_id}")
def update_goal(
    goal_id: int,
    request_data: GoalProgressUpdate,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Update saved amount; status is recomputed"""
    try:
        return update_goal_progress(user_id, goal_id, request_data.saved_amount, db)
    except ValueError as e:
        raise HTTPException(403, str(e))


@router.delete("/{goal_id}")
def remove_goal(goal_id: int, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Delete a goal (ownership verified)"""
    try:
        delete_goal(user_id, goal_id, db)
    except ValueError as e:
        raise HTTPException(403, str(e))
    return {"success": True}
