"""Pydantic schemas for AI insights"""
from typing import List, Optional
from pydantic import BaseModel, ConfigDict


class SpendingCategory(BaseModel):
    category: str
    amount: float


class InsightRequest(BaseModel):
    """Financial snapshot; missing numbers fall back to sample data"""
    model_config = ConfigDict(extra="ignore")

    monthlyIncome: Optional[float] = None
    monthlyExpenses: Optional[float] = None
    totalSaved: Optional[float] = None
    totalDebt: Optional[float] = None
    savingsChange: Optional[float] = None
    expenseChange: Optional[float] = None
    spendingCategories: Optional[List[SpendingCategory]] = None
