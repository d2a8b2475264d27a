"""Payment webhook reconciliation

Provider adapters (Stripe, SenangPay) verify a delivery and normalise it into a
``PaymentEvent``. ``reconcile_event`` then applies that event at most once per
gateway id: a record reaches each outcome at most once (a failed charge may
still succeed on retry, success is final) and the user's tier and subscription
change in the same database transaction.
"""
import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.core.metrics import webhook_events_counter
from app.db.payments import PaymentRepository, DuplicatePaymentRecord
from app.models.payment import PAYMENT_SUCCESS, PAYMENT_FAILED, CLAIMABLE_FROM
from app.models.subscription import SUBSCRIPTION_CANCELED
from app.models.user import TIER_FREE
from app.services.plan_service import normalize_plan_key, plan_duration

logger = logging.getLogger(__name__)
payments_logger = logging.getLogger("payments")

ALREADY_PROCESSED = {"status": "already_processed"}


# ============================================================================
# ERRORS
# ============================================================================

class WebhookError(Exception):
    """Base class for webhook failures that must not be acknowledged"""


class InvalidSignature(WebhookError):
    """Signature missing or does not match the raw body"""


class MalformedPayload(WebhookError):
    """Body cannot be parsed, or names an unknown user, plan or amount"""


class PersistenceUnavailable(WebhookError):
    """Database failed mid-delivery; the provider should retry"""


# ============================================================================
# NORMALISED EVENT
# ============================================================================

class EventKind(enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SUBSCRIPTION_CANCELED = "subscription_canceled"


@dataclass
class PaymentEvent:
    kind: EventKind
    provider: str
    gateway_id: str
    user_id: Optional[int] = None
    email: Optional[str] = None
    customer_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    plan: Optional[str] = None
    subscription_id: Optional[str] = None


def parse_amount(value: Any, minor_units: bool = False) -> Optional[Decimal]:
    """Parse a provider amount into a 2dp Decimal

    Raises:
        MalformedPayload: If the value is present but not a finite, non-negative number
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise MalformedPayload(f"Invalid amount: {value!r}")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise MalformedPayload(f"Invalid amount: {value!r}")
    if not amount.is_finite() or amount < 0:
        raise MalformedPayload(f"Invalid amount: {value!r}")
    if minor_units:
        amount = amount / 100
    return amount.quantize(Decimal("0.01"))


class WebhookProvider(ABC):
    """Interface every payment provider adapter implements"""

    name: str = ""

    @abstractmethod
    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        """Check the delivery signature against the exact raw body.

        Args:
            raw_body: Request body bytes, untouched by any parser
            headers: Request headers with lower-cased names

        Raises:
            InvalidSignature: If the signature is missing or wrong
        """
        pass

    @abstractmethod
    def parse(self, raw_body: bytes) -> Optional[PaymentEvent]:
        """Normalise a verified body into a PaymentEvent.

        Returns:
            The event, or None for event types that need no action

        Raises:
            MalformedPayload: If the body cannot be interpreted
        """
        pass


# ============================================================================
# WEBHOOK ENTRY POINT
# ============================================================================

def handle_webhook(
    provider: WebhookProvider,
    raw_body: bytes,
    headers: Mapping[str, str],
    repository: PaymentRepository,
) -> Dict[str, Any]:
    """Verify, normalise and reconcile one webhook delivery

    Nothing touches the database until the signature has been verified.

    Returns:
        Dict describing the outcome (``processed``, ``already_processed`` or ``ignored``)

    Raises:
        InvalidSignature: Forged or unsigned delivery (HTTP 400)
        MalformedPayload: Unusable payload (HTTP 400)
        PersistenceUnavailable: Database failure (HTTP 500, provider retries)
    """
    lowered = {str(k).lower(): v for k, v in headers.items()}

    try:
        provider.verify(raw_body, lowered)
    except InvalidSignature as e:
        webhook_events_counter.labels(provider=provider.name, outcome="invalid_signature").inc()
        logger.warning(f"Rejected {provider.name} webhook: {e}")
        raise

    try:
        event = provider.parse(raw_body)
    except MalformedPayload as e:
        webhook_events_counter.labels(provider=provider.name, outcome="malformed").inc()
        logger.warning(f"Malformed {provider.name} webhook: {e}")
        raise

    if event is None:
        webhook_events_counter.labels(provider=provider.name, outcome="ignored").inc()
        return {"status": "ignored"}

    try:
        result = reconcile_event(event, repository)
    except MalformedPayload as e:
        repository.rollback()
        webhook_events_counter.labels(provider=provider.name, outcome="malformed").inc()
        logger.warning(f"Cannot reconcile {provider.name} event {event.gateway_id}: {e}")
        raise
    except SQLAlchemyError as e:
        repository.rollback()
        webhook_events_counter.labels(provider=provider.name, outcome="persistence_error").inc()
        logger.error(f"Database error reconciling {provider.name} event {event.gateway_id}: {e}", exc_info=True)
        raise PersistenceUnavailable("Database update failed") from e

    webhook_events_counter.labels(provider=provider.name, outcome=result["status"]).inc()
    return result


# ============================================================================
# RECONCILIATION
# ============================================================================

def reconcile_event(
    event: PaymentEvent,
    repository: PaymentRepository,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Apply a normalised event to the database, at most once per gateway id"""
    now = now or datetime.now(timezone.utc)
    if event.kind is EventKind.SUBSCRIPTION_CANCELED:
        return _reconcile_cancellation(event, repository)
    return _reconcile_payment(event, repository, now)


def _reconcile_payment(event: PaymentEvent, repository: PaymentRepository, now: datetime) -> Dict[str, Any]:
    status = PAYMENT_SUCCESS if event.kind is EventKind.SUCCEEDED else PAYMENT_FAILED
    claimable = CLAIMABLE_FROM[status]

    record = repository.get_payment(event.gateway_id)
    if record is not None and record.status not in claimable:
        payments_logger.info(f"{event.provider} payment {event.gateway_id} already processed ({record.status})")
        return dict(ALREADY_PROCESSED)

    if record is not None:
        if event.user_id is not None and event.user_id != record.user_id:
            raise MalformedPayload(f"Payment {event.gateway_id} belongs to a different user")
        user = repository.find_user(user_id=record.user_id)
        plan = normalize_plan_key(record.plan)
    else:
        user = repository.find_user(user_id=event.user_id, email=event.email, customer_id=event.customer_id)
        plan = normalize_plan_key(event.plan)

    if user is None:
        raise MalformedPayload(f"No user matches payment {event.gateway_id}")
    if plan is None:
        raise MalformedPayload(f"Unknown plan for payment {event.gateway_id}")

    fill_amount = None
    if record is not None and event.amount is not None:
        if record.amount is None:
            fill_amount = event.amount
        elif Decimal(record.amount).quantize(Decimal("0.01")) != event.amount:
            raise MalformedPayload(f"Amount for payment {event.gateway_id} does not match checkout")

    if record is None:
        try:
            repository.insert_payment(
                gateway_id=event.gateway_id,
                provider=event.provider,
                user_id=user.id,
                plan=plan,
                status=status,
                amount=event.amount,
                currency=(event.currency or "MYR").upper(),
            )
        except DuplicatePaymentRecord:
            payments_logger.info(f"{event.provider} payment {event.gateway_id} claimed by a concurrent delivery")
            return dict(ALREADY_PROCESSED)
    elif not repository.claim_pending(event.gateway_id, status, amount=fill_amount, from_statuses=claimable):
        repository.rollback()
        payments_logger.info(f"{event.provider} payment {event.gateway_id} claimed by a concurrent delivery")
        return dict(ALREADY_PROCESSED)

    result: Dict[str, Any] = {"status": "processed", "payment_status": status, "user_id": user.id, "plan": plan}

    if event.kind is EventKind.SUCCEEDED:
        expires_at = now + plan_duration(plan)
        repository.promote_to_pro(
            user,
            plan=plan,
            provider=event.provider,
            expires_at=expires_at,
            gateway_subscription_id=event.subscription_id,
            customer_id=event.customer_id if event.provider == "stripe" else None,
        )
        result["tier_expires_at"] = user.tier_expires_at.isoformat()

    repository.commit()

    if event.kind is EventKind.SUCCEEDED:
        payments_logger.info(
            f"{event.provider} payment {event.gateway_id} succeeded: user {user.id} upgraded to PRO ({plan})"
        )
    else:
        payments_logger.warning(f"{event.provider} payment {event.gateway_id} failed for user {user.id}")
    return result


def _reconcile_cancellation(event: PaymentEvent, repository: PaymentRepository) -> Dict[str, Any]:
    subscription = repository.find_subscription_by_gateway_id(event.subscription_id or event.gateway_id)
    if subscription is not None:
        user = repository.find_user(user_id=subscription.user_id)
    else:
        user = repository.find_user(user_id=event.user_id, email=event.email, customer_id=event.customer_id)

    if user is None:
        payments_logger.warning(
            f"{event.provider} cancellation {event.gateway_id} matches no subscription or customer"
        )
        return {"status": "ignored"}

    if subscription is not None and subscription.status == SUBSCRIPTION_CANCELED and user.tier == TIER_FREE:
        return dict(ALREADY_PROCESSED)

    repository.cancel_subscription(user, subscription)
    repository.commit()

    payments_logger.info(f"{event.provider} subscription {event.gateway_id} canceled: user {user.id} now {user.tier}")
    return {"status": "processed", "user_id": user.id, "tier": user.tier}
