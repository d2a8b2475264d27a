"""Savings goal model"""
from sqlalchemy import Column, Integer, String, DateTime, Float, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base

GOAL_ON_TRACK = "On Track"
GOAL_BEHIND = "Behind"
GOAL_COMPLETED = "Completed"


class Goal(Base):
    """User savings goal"""
    __tablename__ = "goals"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    category = Column(String(100), nullable=True)
    target_amount = Column(Float, nullable=False)
    saved_amount = Column(Float, default=0.0, nullable=False)
    target_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(20), default=GOAL_ON_TRACK, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    user = relationship("User", back_populates="goals")
