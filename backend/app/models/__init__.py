"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from app.models.base import Base
from app.models.user import User
from app.models.transaction import Transaction
from app.models.goal import Goal
from app.models.diary_entry import DiaryEntry
from app.models.ai_insight import AiInsight
from app.models.payment import PaymentRecord
from app.models.subscription import Subscription

# Export all for convenience
__all__ = [
    "Base", "User", "Transaction", "Goal", "DiaryEntry",
    "AiInsight", "PaymentRecord", "Subscription"
]
