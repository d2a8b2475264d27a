"""Paid plan catalogue shared by checkout and webhook reconciliation"""
from datetime import timedelta
from decimal import Decimal
from typing import Dict, Optional

from app.core.config import settings

PLAN_PRO = "PRO"
PLAN_PRO_MONTHLY = "PRO_MONTHLY"

PLANS: Dict[str, Dict] = {
    PLAN_PRO: {
        "name": "Rumina Pro (Yearly)",
        "duration_days": 365,
        "amount": Decimal("99.00"),
        "currency": "MYR",
    },
    PLAN_PRO_MONTHLY: {
        "name": "Rumina Pro (Monthly)",
        "duration_days": 30,
        "amount": Decimal("9.90"),
        "currency": "MYR",
    },
}


def get_plan(plan_key: Optional[str]) -> Optional[Dict]:
    if not plan_key:
        return None
    return PLANS.get(plan_key.upper())


def normalize_plan_key(plan_key: Optional[str]) -> Optional[str]:
    """Return the canonical plan key, or None if the plan is unknown"""
    if not plan_key or plan_key.upper() not in PLANS:
        return None
    return plan_key.upper()


def plan_duration(plan_key: str) -> timedelta:
    """How far a successful payment for ``plan_key`` moves the tier expiry

    Raises:
        ValueError: If the plan is unknown
    """
    plan = get_plan(plan_key)
    if not plan:
        raise ValueError(f"Unknown plan '{plan_key}'")
    return timedelta(days=plan["duration_days"])


def stripe_price_for_plan(plan_key: str) -> Optional[str]:
    """Stripe Price ID configured for a plan"""
    prices = {
        PLAN_PRO: settings.STRIPE_PRO_PRICE_ID,
        PLAN_PRO_MONTHLY: settings.STRIPE_PRO_MONTHLY_PRICE_ID,
    }
    return prices.get(normalize_plan_key(plan_key)) or None


def plan_for_stripe_price(price_id: Optional[str]) -> Optional[str]:
    """Reverse lookup of a configured Stripe Price ID"""
    if not price_id:
        return None
    for plan_key in PLANS:
        if stripe_price_for_plan(plan_key) == price_id:
            return plan_key
    return None


def list_plans() -> Dict[str, Dict]:
    return {
        key: {
            "key": key,
            "name": plan["name"],
            "duration_days": plan["duration_days"],
            "amount": float(plan["amount"]),
            "currency": plan["currency"],
        }
        for key, plan in PLANS.items()
    }
