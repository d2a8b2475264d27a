import json
import logging
import stripe
from typing import Dict, Optional, Any, Mapping
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.user import User
from app.models.payment import PaymentRecord, PAYMENT_PENDING
from app.services.plan_service import get_plan, normalize_plan_key, plan_for_stripe_price, stripe_price_for_plan
from app.services.payment_service import (
    WebhookProvider, PaymentEvent, EventKind, InvalidSignature, MalformedPayload, parse_amount
)

logger = logging.getLogger(__name__)

# Configure Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY

PROVIDER_NAME = "stripe"
ENDED_SUBSCRIPTION_STATUSES = ("canceled", "unpaid", "incomplete_expired")

# ============================================================================
# STRIPE OBJECT ACCESS HELPER
# ============================================================================

def _get_stripe_value(obj: Any, key: str, default=None):
    """Safely extract value from Stripe object (supports both dict and attribute access)."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        value = obj.get(key, default)
        return default if value is None else value
    value = getattr(obj, key, default)
    return default if value is None else value


def _get_id(value: Any) -> Optional[str]:
    """Expanded Stripe references arrive as objects, unexpanded ones as id strings"""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    return _get_stripe_value(value, 'id')


# ============================================================================
# CORE STRIPE OPERATIONS
# ============================================================================

def create_stripe_customer(user_id: int, db: Session) -> Optional[str]:
    """Create a Stripe customer for a user, or return the existing one.

    Raises:
        ValueError: If the user does not exist or Stripe is not configured
    """
    if not settings.STRIPE_SECRET_KEY:
        logger.warning("Stripe not configured, skipping customer creation")
        raise ValueError("Stripe is not configured")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise ValueError("User not found")

    if user.stripe_customer_id:
        return user.stripe_customer_id

    customer = stripe.Customer.create(
        email=user.email,
        name=user.name or None,
        metadata={"user_id": str(user_id)}
    )

    user.stripe_customer_id = customer.id
    db.commit()

    logger.info(f"Created Stripe customer {customer.id} for user {user_id}")
    return customer.id


def create_checkout_session(user_id: int, plan_key: str, success_url: str, cancel_url: str, db: Session) -> Dict:
    """Start a subscription checkout and record it as a pending payment.

    The checkout session id is the payment's gateway id, so the
    ``checkout.session.completed`` webhook finds and claims this record.

    Raises:
        ValueError: If the user or plan is unknown or the plan has no Stripe price
    """
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise ValueError("User not found")

    plan = normalize_plan_key(plan_key)
    if not plan:
        raise ValueError(f"Unknown plan '{plan_key}'")
    price_id = stripe_price_for_plan(plan)
    if not price_id:
        raise ValueError(f"Plan '{plan}' is not configured for Stripe")

    metadata = {"user_id": str(user_id), "plan": plan}
    checkout_params = {
        "payment_method_types": ["card"],
        "line_items": [{"price": price_id, "quantity": 1}],
        "mode": "subscription",
        "success_url": success_url,
        "cancel_url": cancel_url,
        "client_reference_id": str(user_id),
        "metadata": metadata,
        "subscription_data": {"metadata": metadata},
    }

    if user.stripe_customer_id:
        checkout_params["customer"] = user.stripe_customer_id
    else:
        checkout_params["customer_email"] = user.email

    session = stripe.checkout.Session.create(**checkout_params)

    # Amount is filled in from the completed session
    db.add(PaymentRecord(
        gateway_id=session.id,
        provider=PROVIDER_NAME,
        user_id=user_id,
        plan=plan,
        status=PAYMENT_PENDING,
        amount=None,
        currency=get_plan(plan)["currency"],
    ))
    db.commit()

    logger.info(f"Created Stripe checkout session {session.id} for user {user_id} ({plan})")
    return {"id": session.id, "url": session.url}


# ============================================================================
# WEBHOOK ADAPTER
# ============================================================================

def _parse_user_id(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    text = str(value).strip()
    if not text.isdigit():
        raise MalformedPayload(f"Invalid user id in metadata: {value!r}")
    return int(text)


def _invoice_subscription(invoice: Dict) -> Dict[str, Any]:
    """Subscription id and metadata of an invoice, across API versions"""
    details = _get_stripe_value(_get_stripe_value(invoice, 'parent'), 'subscription_details') \
        or _get_stripe_value(invoice, 'subscription_details') or {}
    subscription_id = _get_id(_get_stripe_value(invoice, 'subscription')) \
        or _get_id(_get_stripe_value(details, 'subscription'))
    return {"id": subscription_id, "metadata": _get_stripe_value(details, 'metadata', {})}


def _invoice_price_id(invoice: Dict) -> Optional[str]:
    lines = _get_stripe_value(_get_stripe_value(invoice, 'lines'), 'data', [])
    for line in lines:
        price_id = _get_id(_get_stripe_value(line, 'price'))
        if not price_id:
            pricing = _get_stripe_value(_get_stripe_value(line, 'pricing'), 'price_details')
            price_id = _get_id(_get_stripe_value(pricing, 'price'))
        if price_id:
            return price_id
    return None


class StripeWebhookProvider(WebhookProvider):
    """Verifies ``Stripe-Signature`` and maps Stripe events to PaymentEvents"""

    name = PROVIDER_NAME

    def __init__(self, webhook_secret: Optional[str] = None, tolerance: Optional[int] = None):
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        self.tolerance = tolerance if tolerance is not None else settings.STRIPE_WEBHOOK_TOLERANCE

    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        if not self.webhook_secret:
            logger.error("Webhook secret not configured")
            raise InvalidSignature("Webhook secret not configured")

        sig_header = headers.get("stripe-signature")
        if not sig_header:
            raise InvalidSignature("Missing stripe-signature header")

        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError:
            raise InvalidSignature("Webhook body is not UTF-8")

        try:
            stripe.WebhookSignature.verify_header(payload, sig_header, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature(f"Invalid signature: {e}") from e

    def parse(self, raw_body: bytes) -> Optional[PaymentEvent]:
        try:
            event = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            raise MalformedPayload("Invalid payload")

        if not isinstance(event, dict):
            raise MalformedPayload("Invalid payload")
        event_type = event.get("type")
        data = event.get("data")
        obj = data.get("object") if isinstance(data, dict) else None
        if not event_type or not isinstance(obj, dict):
            raise MalformedPayload("Event is missing type or data.object")

        handlers = {
            "checkout.session.completed": self._checkout_completed,
            "invoice.paid": self._invoice_paid,
            "invoice.payment_succeeded": self._invoice_paid,
            "invoice.payment_failed": self._invoice_failed,
            "customer.subscription.updated": self._subscription_updated,
            "customer.subscription.deleted": self._subscription_deleted,
        }
        handler = handlers.get(event_type)
        if handler is None:
            logger.info(f"Unhandled Stripe event type: {event_type}")
            return None
        return handler(obj)

    def _checkout_completed(self, session: Dict) -> Optional[PaymentEvent]:
        session_id = _get_stripe_value(session, 'id')
        if not session_id:
            raise MalformedPayload("Checkout session has no id")

        # Delayed payment methods complete the session before the money arrives
        if _get_stripe_value(session, 'payment_status') not in ("paid", "no_payment_required"):
            logger.info(f"Checkout session {session_id} completed without payment yet")
            return None

        metadata = _get_stripe_value(session, 'metadata', {})
        user_id = _parse_user_id(_get_stripe_value(metadata, 'user_id') or _get_stripe_value(session, 'client_reference_id'))
        customer_details = _get_stripe_value(session, 'customer_details', {})

        return PaymentEvent(
            kind=EventKind.SUCCEEDED,
            provider=PROVIDER_NAME,
            gateway_id=session_id,
            user_id=user_id,
            email=_get_stripe_value(customer_details, 'email') or _get_stripe_value(session, 'customer_email'),
            customer_id=_get_id(_get_stripe_value(session, 'customer')),
            amount=parse_amount(_get_stripe_value(session, 'amount_total'), minor_units=True),
            currency=_get_stripe_value(session, 'currency'),
            plan=_get_stripe_value(metadata, 'plan'),
            subscription_id=_get_id(_get_stripe_value(session, 'subscription')),
        )

    def _invoice_event(self, invoice: Dict, kind: EventKind, amount_key: str) -> PaymentEvent:
        invoice_id = _get_stripe_value(invoice, 'id')
        if not invoice_id:
            raise MalformedPayload("Invoice has no id")

        subscription = _invoice_subscription(invoice)
        metadata = subscription["metadata"] or _get_stripe_value(invoice, 'metadata', {})
        plan = _get_stripe_value(metadata, 'plan') or plan_for_stripe_price(_invoice_price_id(invoice))

        return PaymentEvent(
            kind=kind,
            provider=PROVIDER_NAME,
            gateway_id=invoice_id,
            user_id=_parse_user_id(_get_stripe_value(metadata, 'user_id')),
            email=_get_stripe_value(invoice, 'customer_email'),
            customer_id=_get_id(_get_stripe_value(invoice, 'customer')),
            amount=parse_amount(_get_stripe_value(invoice, amount_key), minor_units=True),
            currency=_get_stripe_value(invoice, 'currency'),
            plan=plan,
            subscription_id=subscription["id"],
        )

    def _invoice_paid(self, invoice: Dict) -> Optional[PaymentEvent]:
        # The first invoice of a subscription is settled by checkout.session.completed
        if _get_stripe_value(invoice, 'billing_reason') == "subscription_create":
            return None
        return self._invoice_event(invoice, EventKind.SUCCEEDED, 'amount_paid')

    def _invoice_failed(self, invoice: Dict) -> Optional[PaymentEvent]:
        invoice_id = _get_stripe_value(invoice, 'id', 'unknown')
        logger.warning(f"Payment failed for invoice {invoice_id}")
        return self._invoice_event(invoice, EventKind.FAILED, 'amount_due')

    def _subscription_updated(self, subscription: Dict) -> Optional[PaymentEvent]:
        # Period renewals arrive as invoice.paid
        status = _get_stripe_value(subscription, 'status')
        if status not in ENDED_SUBSCRIPTION_STATUSES:
            return None
        logger.info(f"Stripe subscription {_get_stripe_value(subscription, 'id')} ended with status {status}")
        return self._subscription_deleted(subscription)

    def _subscription_deleted(self, subscription: Dict) -> PaymentEvent:
        subscription_id = _get_stripe_value(subscription, 'id')
        if not subscription_id:
            raise MalformedPayload("Subscription has no id")
        metadata = _get_stripe_value(subscription, 'metadata', {})
        return PaymentEvent(
            kind=EventKind.SUBSCRIPTION_CANCELED,
            provider=PROVIDER_NAME,
            gateway_id=subscription_id,
            user_id=_parse_user_id(_get_stripe_value(metadata, 'user_id')),
            customer_id=_get_id(_get_stripe_value(subscription, 'customer')),
            plan=_get_stripe_value(metadata, 'plan'),
            subscription_id=subscription_id,
        )
