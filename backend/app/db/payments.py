"""Persistence for payment records, tier state and subscriptions

The webhook reconciler talks to the database only through
``PaymentRepository`` so every read and write of one delivery happens on a
single session and commits (or rolls back) together.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.payment import PaymentRecord, PAYMENT_PENDING
from app.models.subscription import Subscription, SUBSCRIPTION_ACTIVE, SUBSCRIPTION_CANCELED
from app.models.user import User, TIER_FREE, TIER_PRO

logger = logging.getLogger(__name__)


class DuplicatePaymentRecord(Exception):
    """Another delivery already inserted a record for this gateway id"""


class PaymentRepository:
    """Unit of work for one webhook delivery"""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Payment records
    # ------------------------------------------------------------------

    def get_payment(self, gateway_id: str) -> Optional[PaymentRecord]:
        return self.db.query(PaymentRecord).filter(PaymentRecord.gateway_id == gateway_id).first()

    def insert_payment(
        self,
        gateway_id: str,
        provider: str,
        user_id: int,
        plan: str,
        status: str,
        amount: Optional[Decimal] = None,
        currency: str = "MYR",
    ) -> PaymentRecord:
        """Insert a payment record and flush it so the unique index is checked now

        Raises:
            DuplicatePaymentRecord: If a record with this gateway id already exists
        """
        record = PaymentRecord(
            gateway_id=gateway_id,
            provider=provider,
            user_id=user_id,
            plan=plan,
            status=status,
            amount=amount,
            currency=currency,
        )
        self.db.add(record)
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            logger.info(f"Payment record {gateway_id} inserted concurrently: {e.orig}")
            raise DuplicatePaymentRecord(gateway_id) from e
        return record

    def claim_pending(
        self,
        gateway_id: str,
        status: str,
        amount: Optional[Decimal] = None,
        from_statuses: Sequence[str] = (PAYMENT_PENDING,),
    ) -> bool:
        """Move a record in one of ``from_statuses`` to ``status``

        Only one delivery can win: the update is conditional on the row still
        holding one of ``from_statuses``. Returns False when another delivery
        got there first. ``amount`` fills in the charged amount when checkout
        did not know it.
        """
        values = {"status": status, "updated_at": datetime.now(timezone.utc)}
        if amount is not None:
            values["amount"] = amount
        updated = (
            self.db.query(PaymentRecord)
            .filter(
                PaymentRecord.gateway_id == gateway_id,
                PaymentRecord.status.in_(tuple(from_statuses)),
            )
            .update(values, synchronize_session=False)
        )
        return updated == 1

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def find_user(
        self,
        user_id: Optional[int] = None,
        email: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> Optional[User]:
        """Resolve a user by id, then Stripe customer id, then email"""
        if user_id is not None:
            user = self.db.query(User).filter(User.id == user_id).first()
            if user:
                return user
        if customer_id:
            user = self.db.query(User).filter(User.stripe_customer_id == customer_id).first()
            if user:
                return user
        if email:
            return self.db.query(User).filter(User.email == email.strip().lower()).first()
        return None

    # ------------------------------------------------------------------
    # Tier & subscriptions
    # ------------------------------------------------------------------

    def get_subscription(self, user_id: int, plan: str) -> Optional[Subscription]:
        return self.db.query(Subscription).filter(
            Subscription.user_id == user_id,
            Subscription.plan == plan
        ).first()

    def find_subscription_by_gateway_id(self, gateway_subscription_id: str) -> Optional[Subscription]:
        if not gateway_subscription_id:
            return None
        return self.db.query(Subscription).filter(
            Subscription.gateway_subscription_id == gateway_subscription_id
        ).first()

    def promote_to_pro(
        self,
        user: User,
        plan: str,
        provider: str,
        expires_at: datetime,
        gateway_subscription_id: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> Subscription:
        """Set the user's tier to PRO and upsert the (user, plan) subscription

        Neither the subscription period nor the tier expiry moves backwards: a
        shorter plan bought while a longer one is running leaves the later end
        date in place.
        """
        if customer_id and not user.stripe_customer_id:
            user.stripe_customer_id = customer_id

        subscription = self.get_subscription(user.id, plan)
        if subscription is None:
            subscription = Subscription(user_id=user.id, plan=plan)
            self.db.add(subscription)

        subscription.provider = provider
        subscription.status = SUBSCRIPTION_ACTIVE
        subscription.current_period_end = _latest(subscription.current_period_end, expires_at)
        if gateway_subscription_id:
            subscription.gateway_subscription_id = gateway_subscription_id

        other = self.active_subscription_other_than(user.id, subscription.id)
        current_expiry = user.tier_expires_at if user.tier == TIER_PRO else None
        user.tier = TIER_PRO
        user.tier_expires_at = _latest(
            subscription.current_period_end,
            current_expiry,
            other.current_period_end if other is not None else None,
        )
        return subscription

    def active_subscription_other_than(self, user_id: int, subscription_id: Optional[int]) -> Optional[Subscription]:
        """Latest-ending ACTIVE subscription of a user, excluding one row"""
        query = self.db.query(Subscription).filter(
            Subscription.user_id == user_id,
            Subscription.status == SUBSCRIPTION_ACTIVE
        )
        if subscription_id is not None:
            query = query.filter(Subscription.id != subscription_id)
        return query.order_by(Subscription.current_period_end.desc()).first()

    def cancel_subscription(self, user: User, subscription: Optional[Subscription]) -> None:
        """Mark a subscription CANCELED and demote the user

        A user who still holds another active plan keeps PRO until that plan's
        period end.
        """
        if subscription is not None:
            subscription.status = SUBSCRIPTION_CANCELED

        remaining = self.active_subscription_other_than(user.id, subscription.id if subscription else None)
        if remaining is not None and _is_future(remaining.current_period_end):
            user.tier = TIER_PRO
            user.tier_expires_at = remaining.current_period_end
            return

        user.tier = TIER_FREE
        user.tier_expires_at = None

    # ------------------------------------------------------------------
    # Transaction control
    # ------------------------------------------------------------------

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()


def _is_future(moment: Optional[datetime]) -> bool:
    if moment is None:
        return False
    return _as_utc(moment) > datetime.now(timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    # SQLite hands back naive datetimes; they were written as UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _latest(*moments: Optional[datetime]) -> Optional[datetime]:
    present = [_as_utc(m) for m in moments if m is not None]
    return max(present) if present else None
