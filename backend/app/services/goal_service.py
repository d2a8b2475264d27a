"""Savings goal service"""
import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.orm import Session

from app.models.goal import Goal, GOAL_ON_TRACK, GOAL_BEHIND, GOAL_COMPLETED
from app.services.insights_service import generate_goal_progress_insight

logger = logging.getLogger(__name__)

ON_TRACK_RATIO = 0.7
NOT_FOUND_MESSAGE = "Not authorized or not found"


def goal_status(saved_amount: float, target_amount: float) -> str:
    """Completed at the target, On Track from 70% of it, Behind below"""
    if saved_amount >= target_amount:
        return GOAL_COMPLETED
    if target_amount > 0 and saved_amount / target_amount >= ON_TRACK_RATIO:
        return GOAL_ON_TRACK
    return GOAL_BEHIND


def serialize_goal(goal: Goal) -> Dict:
    return {
        "id": goal.id,
        "userId": goal.user_id,
        "title": goal.title,
        "category": goal.category,
        "targetAmount": goal.target_amount,
        "savedAmount": goal.saved_amount,
        "targetDate": goal.target_date.isoformat() if goal.target_date else None,
        "status": goal.status,
        "createdAt": goal.created_at.isoformat() if goal.created_at else None,
    }


def _get_owned_goal(user_id: int, goal_id: int, db: Session) -> Goal:
    goal = db.query(Goal).filter(Goal.id == goal_id).first()
    if not goal or goal.user_id != user_id:
        raise ValueError(NOT_FOUND_MESSAGE)
    return goal


def list_goals_with_insight(user_id: int, db: Session) -> Dict:
    goals = [
        serialize_goal(g)
        for g in db.query(Goal).filter(Goal.user_id == user_id).order_by(Goal.created_at.asc(), Goal.id.asc()).all()
    ]
    insight = generate_goal_progress_insight(goals)
    return {"goals": goals, "ruminaInsight": insight.get("ruminaInsight")}


def create_goal(
    user_id: int,
    title: str,
    target_amount: float,
    db: Session,
    category: Optional[str] = None,
    target_date: Optional[datetime] = None,
) -> Dict:
    goal = Goal(
        user_id=user_id,
        title=title,
        category=category,
        target_amount=target_amount,
        saved_amount=0.0,
        target_date=target_date,
        status=GOAL_ON_TRACK,
    )
    db.add(goal)
    db.commit()
    db.refresh(goal)
    logger.info(f"Created goal {goal.id} for user {user_id}")
    return serialize_goal(goal)


def update_goal_progress(user_id: int, goal_id: int, saved_amount: float, db: Session) -> Dict:
    """Record the saved amount and recompute the goal's status

    Raises:
        ValueError: If the goal does not exist or belongs to someone else
    """
    goal = _get_owned_goal(user_id, goal_id, db)
    goal.saved_amount = saved_amount
    goal.status = goal_status(saved_amount, goal.target_amount)
    db.commit()
    db.refresh(goal)
    return serialize_goal(goal)


def delete_goal(user_id: int, goal_id: int, db: Session) -> None:
    """Delete one of the user's goals

    Raises:
        ValueError: If the goal does not exist or belongs to someone else
    """
    goal = _get_owned_goal(user_id, goal_id, db)
    db.delete(goal)
    db.commit()
