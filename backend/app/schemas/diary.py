"""Pydantic schemas for the financial diary"""
from typing import Optional
from pydantic import BaseModel, Field


class DiaryEntryCreate(BaseModel):
    mood: Optional[str] = Field(None, max_length=50)
    content: str = Field(..., min_length=3)
