"""Pydantic schemas for billing and subscriptions"""
from pydantic import BaseModel, Field


class CheckoutRequest(BaseModel):
    plan: str = Field("PRO", min_length=1)  # 'PRO', 'PRO_MONTHLY'
