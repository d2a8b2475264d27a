"""Pydantic schemas for transactions"""
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field


class TransactionCreate(BaseModel):
    type: Literal["income", "expense"]
    category: str = Field(..., min_length=1, max_length=100)
    amount: float = Field(..., ge=0, allow_inf_nan=False)
    description: Optional[str] = Field(None, max_length=255)
    date: Optional[datetime] = None
