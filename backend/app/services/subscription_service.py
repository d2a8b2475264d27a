"""Subscription state as seen by the user"""
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy.orm import Session

from app.models.subscription import Subscription
from app.models.user import User, TIER_FREE, TIER_PRO
from app.services.plan_service import list_plans

logger = logging.getLogger(__name__)


def _as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def effective_tier(user: User, now: Optional[datetime] = None) -> str:
    """PRO only while the tier expiry lies in the future"""
    if user.tier != TIER_PRO:
        return TIER_FREE
    expires_at = _as_utc(user.tier_expires_at)
    if expires_at is None:
        return TIER_PRO
    return TIER_PRO if expires_at > (now or datetime.now(timezone.utc)) else TIER_FREE


def get_subscription_info(user_id: int, db: Session) -> Dict:
    """Tier, expiry and subscription rows for a user

    Raises:
        ValueError: If the user no longer exists
    """
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise ValueError("User no longer exists")

    subscriptions = (
        db.query(Subscription)
        .filter(Subscription.user_id == user_id)
        .order_by(Subscription.current_period_end.desc())
        .all()
    )
    return {
        "tier": effective_tier(user),
        "tierExpiresAt": user.tier_expires_at.isoformat() if user.tier_expires_at else None,
        "subscriptions": [
            {
                "id": sub.id,
                "plan": sub.plan,
                "provider": sub.provider,
                "status": sub.status,
                "currentPeriodEnd": sub.current_period_end.isoformat() if sub.current_period_end else None,
            }
            for sub in subscriptions
        ],
        "plans": list_plans(),
    }
