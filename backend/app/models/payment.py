"""Payment record model"""
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from app.models.base import Base

PAYMENT_PENDING = "pending"
PAYMENT_SUCCESS = "success"
PAYMENT_FAILED = "failed"

# Statuses a record may hold before moving to each outcome. A charge that
# failed can still succeed on retry; success is final.
CLAIMABLE_FROM = {
    PAYMENT_SUCCESS: (PAYMENT_PENDING, PAYMENT_FAILED),
    PAYMENT_FAILED: (PAYMENT_PENDING,),
}


class PaymentRecord(Base):
    """One payment attempt. ``gateway_id`` is the webhook idempotency key."""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    gateway_id = Column(String(255), unique=True, nullable=False, index=True)
    provider = Column(String(20), nullable=False)  # 'stripe', 'senangpay'
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), default="MYR", nullable=False)
    status = Column(String(20), default=PAYMENT_PENDING, nullable=False)  # 'pending', 'success', 'failed'
    plan = Column(String(50), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    user = relationship("User", back_populates="payments")
