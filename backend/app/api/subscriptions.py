"""Billing API routes: subscription state, Stripe and SenangPay"""
import logging
import stripe
from typing import Mapping
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.schemas.subscriptions import CheckoutRequest
from app.core.security import require_auth
from app.core.config import settings
from app.db.session import get_db
from app.db.payments import PaymentRepository
from app.services.payment_service import (
    WebhookProvider, handle_webhook, InvalidSignature, MalformedPayload, PersistenceUnavailable
)
from app.services.stripe_service import StripeWebhookProvider, create_stripe_customer, create_checkout_session
from app.services.senangpay_service import SenangPayWebhookProvider, create_checkout
from app.services.subscription_service import get_subscription_info

router = APIRouter(prefix="/api/subscription", tags=["subscriptions"])
stripe_router = APIRouter(prefix="/api/stripe", tags=["stripe"])
senangpay_router = APIRouter(prefix="/api/senangpay", tags=["senangpay"])
logger = logging.getLogger(__name__)


def run_webhook(provider: WebhookProvider, payload: bytes, headers: Mapping[str, str], db: Session):
    """Reconcile one delivery and map the outcome to an HTTP response"""
    try:
        result = handle_webhook(provider, payload, headers, PaymentRepository(db))
    except InvalidSignature:
        raise HTTPException(400, "Invalid signature")
    except MalformedPayload as e:
        raise HTTPException(400, str(e))
    except PersistenceUnavailable:
        # Non-2xx makes the provider retry the delivery
        return JSONResponse(status_code=500, content={"error": "Database update failed"})
    return {"received": True, **result}


@router.get("")
def get_subscription(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Current tier, expiry and subscriptions"""
    try:
        return get_subscription_info(user_id, db)
    except ValueError as e:
        # Return 401 so the frontend drops a token whose user was deleted
        raise HTTPException(401, str(e))


# ============================================================================
# STRIPE
# ============================================================================

@stripe_router.post("/customer")
def create_customer(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Create (or return) the user's Stripe customer"""
    try:
        customer_id = create_stripe_customer(user_id, db)
    except ValueError as e:
        raise HTTPException(400, str(e))
    except stripe.StripeError as e:
        logger.error(f"Error creating Stripe customer for user {user_id}: {e}")
        raise HTTPException(502, "Failed to create Stripe customer")
    return {"customerId": customer_id}


@stripe_router.post("/create-checkout-session")
def create_checkout_session_route(
    checkout_request: CheckoutRequest,
    request: Request,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Create Stripe checkout session for a plan"""
    frontend_url = (settings.FRONTEND_URL or str(request.base_url)).rstrip("/")
    try:
        result = create_checkout_session(
            user_id,
            checkout_request.plan,
            f"{frontend_url}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
            f"{frontend_url}/billing/cancel",
            db
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    except stripe.StripeError as e:
        logger.error(f"Error creating checkout session for user {user_id}: {e}")
        raise HTTPException(502, "Failed to create checkout session")
    return result


@stripe_router.post("/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle Stripe webhook events

    The body is read as raw bytes; the signature covers the exact bytes sent.
    """
    payload = await request.body()
    return run_webhook(StripeWebhookProvider(), payload, request.headers, db)


# ============================================================================
# SENANGPAY
# ============================================================================

@senangpay_router.post("/checkout")
def senangpay_checkout(
    checkout_request: CheckoutRequest,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Create a pending SenangPay order and its payment URL"""
    try:
        return create_checkout(user_id, checkout_request.plan, db)
    except ValueError as e:
        raise HTTPException(400, str(e))


@senangpay_router.post("/webhook")
async def senangpay_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle SenangPay payment callbacks"""
    payload = await request.body()
    return run_webhook(SenangPayWebhookProvider(), payload, request.headers, db)
