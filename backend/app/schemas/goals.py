"""Pydantic schemas for savings goals"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class GoalCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1, max_length=255)
    category: Optional[str] = Field(None, max_length=100)
    target_amount: float = Field(..., alias="targetAmount", gt=0, allow_inf_nan=False)
    target_date: Optional[datetime] = Field(None, alias="targetDate")


class GoalProgressUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    saved_amount: float = Field(..., alias="savedAmount", ge=0, allow_inf_nan=False)
