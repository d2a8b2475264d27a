"""Stored AI wellness insight"""
from sqlalchemy import Column, Integer, String, DateTime, Float, JSON, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base


class AiInsight(Base):
    """Snapshot of a generated financial wellness evaluation"""
    __tablename__ = "ai_insights"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    wellness_score = Column(Float, default=0.0, nullable=False)
    savings_rate = Column(Float, default=0.0, nullable=False)
    debt_management = Column(String(500), default="No data available", nullable=False)
    emergency_fund = Column(String(500), default="No data available", nullable=False)
    expense_control = Column(String(500), default="No data available", nullable=False)
    payload = Column(JSON, nullable=True)

    user = relationship("User", back_populates="ai_insights")
