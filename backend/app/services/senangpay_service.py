"""SenangPay checkout links and webhook adapter

Order ids have the form ``<PLAN>_<userId>_<timestamp>`` (for example
``PRO_42_1699000000``); they are the gateway id of the payment record and
carry the owning user for deliveries that arrive without one.
"""
import hashlib
import hmac
import json
import logging
import time
from decimal import Decimal
from typing import Dict, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlencode

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.payment import PaymentRecord, PAYMENT_PENDING
from app.models.user import User
from app.services.plan_service import get_plan, normalize_plan_key
from app.services.payment_service import (
    WebhookProvider, PaymentEvent, EventKind, InvalidSignature, MalformedPayload, parse_amount
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "senangpay"
SIGNATURE_HEADER = "x-signature"

SUCCESS_STATUSES = {"1", "success", "successful", "paid"}
FAILED_STATUSES = {"0", "failed", "fail", "declined"}
PENDING_STATUSES = {"2", "pending"}


def sign(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def build_order_id(plan: str, user_id: int, timestamp: Optional[int] = None) -> str:
    return f"{plan}_{user_id}_{int(timestamp if timestamp is not None else time.time())}"


def parse_order_id(order_id: str) -> Tuple[Optional[str], Optional[int]]:
    """Split an order id into (plan, user_id); parts that don't parse are None"""
    parts = order_id.rsplit("_", 2)
    if len(parts) != 3 or not parts[1].isdigit() or not parts[2].isdigit():
        return None, None
    return normalize_plan_key(parts[0]), int(parts[1])


def checkout_hash(detail: str, amount: str, order_id: str, secret: Optional[str] = None) -> str:
    """Hash SenangPay expects on the payment link"""
    secret = secret if secret is not None else settings.SENANGPAY_SECRET_KEY
    return sign(secret, (secret + detail + amount + order_id).encode("utf-8"))


def create_checkout(user_id: int, plan_key: str, db: Session) -> Dict:
    """Create a pending payment and the signed SenangPay payment URL for it

    Raises:
        ValueError: If the user or plan is unknown or SenangPay is not configured
    """
    if not settings.SENANGPAY_MERCHANT_ID or not settings.SENANGPAY_SECRET_KEY:
        raise ValueError("SenangPay is not configured")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise ValueError("User not found")

    plan = normalize_plan_key(plan_key)
    if not plan:
        raise ValueError(f"Unknown plan '{plan_key}'")
    plan_info = get_plan(plan)

    order_id = build_order_id(plan, user_id)
    amount = f"{plan_info['amount']:.2f}"
    detail = plan_info["name"].replace(" ", "_")

    db.add(PaymentRecord(
        gateway_id=order_id,
        provider=PROVIDER_NAME,
        user_id=user_id,
        plan=plan,
        status=PAYMENT_PENDING,
        amount=Decimal(amount),
        currency=plan_info["currency"],
    ))
    db.commit()

    query = urlencode({
        "detail": detail,
        "amount": amount,
        "order_id": order_id,
        "name": user.name or "",
        "email": user.email,
        "hash": checkout_hash(detail, amount, order_id),
    })
    url = f"{settings.SENANGPAY_BASE_URL.rstrip('/')}/{settings.SENANGPAY_MERCHANT_ID}?{query}"

    logger.info(f"Created SenangPay order {order_id} for user {user_id}")
    return {"order_id": order_id, "amount": amount, "currency": plan_info["currency"], "url": url}


class SenangPayWebhookProvider(WebhookProvider):
    """HMAC-SHA256 over the raw body, hex encoded in ``X-Signature``"""

    name = PROVIDER_NAME

    def __init__(self, secret_key: Optional[str] = None):
        self.secret_key = secret_key if secret_key is not None else settings.SENANGPAY_SECRET_KEY

    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        if not self.secret_key:
            logger.error("SenangPay secret key not configured")
            raise InvalidSignature("Webhook secret not configured")

        signature = (headers.get(SIGNATURE_HEADER) or "").strip().lower()
        if not signature:
            raise InvalidSignature(f"Missing {SIGNATURE_HEADER} header")

        expected = sign(self.secret_key, raw_body)
        if not hmac.compare_digest(expected, signature):
            raise InvalidSignature("Signature mismatch")

    def parse(self, raw_body: bytes) -> Optional[PaymentEvent]:
        fields = self._decode(raw_body)

        order_id = str(fields.get("order_id") or "").strip()
        if not order_id:
            raise MalformedPayload("Missing order_id")

        status = str(fields.get("status_id") or fields.get("status") or "").strip().lower()
        if status in PENDING_STATUSES:
            logger.info(f"SenangPay order {order_id} still pending")
            return None
        if status in SUCCESS_STATUSES:
            kind = EventKind.SUCCEEDED
        elif status in FAILED_STATUSES:
            kind = EventKind.FAILED
        else:
            raise MalformedPayload(f"Unknown payment status {status!r}")

        order_plan, user_id = parse_order_id(order_id)
        field_plan = fields.get("plan")
        if field_plan and normalize_plan_key(field_plan) is None:
            raise MalformedPayload(f"Unknown plan {field_plan!r}")
        if order_plan and field_plan and normalize_plan_key(field_plan) != order_plan:
            raise MalformedPayload("Plan does not match order id")

        return PaymentEvent(
            kind=kind,
            provider=PROVIDER_NAME,
            gateway_id=order_id,
            user_id=user_id,
            email=fields.get("email") or None,
            amount=parse_amount(fields.get("amount")),
            currency="MYR",
            plan=order_plan or field_plan,
        )

    @staticmethod
    def _decode(raw_body: bytes) -> Dict[str, str]:
        """Accept both JSON and form-encoded callbacks"""
        try:
            text = raw_body.decode("utf-8").strip()
        except UnicodeDecodeError:
            raise MalformedPayload("Body is not UTF-8")
        if not text:
            raise MalformedPayload("Empty body")

        if text.startswith("{"):
            try:
                data = json.loads(text)
            except ValueError:
                raise MalformedPayload("Invalid JSON body")
            if not isinstance(data, dict):
                raise MalformedPayload("Invalid JSON body")
            return {k: v for k, v in data.items() if v is not None}

        return dict(parse_qsl(text, keep_blank_values=True))
