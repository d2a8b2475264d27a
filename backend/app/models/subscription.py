"""Subscription model"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base

SUBSCRIPTION_ACTIVE = "ACTIVE"
SUBSCRIPTION_CANCELED = "CANCELED"


class Subscription(Base):
    """Paid plan period, one row per (user, plan)"""
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan = Column(String(50), nullable=False)
    provider = Column(String(20), nullable=False)  # 'stripe', 'senangpay'
    gateway_subscription_id = Column(String(255), unique=True, nullable=True, index=True)
    status = Column(String(20), default=SUBSCRIPTION_ACTIVE, nullable=False)  # 'ACTIVE', 'CANCELED'
    current_period_end = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    user = relationship("User", back_populates="subscriptions")

    __table_args__ = (
        UniqueConstraint("user_id", "plan", name="uq_subscriptions_user_plan"),
    )
