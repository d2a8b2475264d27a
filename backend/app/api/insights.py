"""AI insights and dashboard API routes"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.security import require_auth
from app.db.session import get_db
from app.schemas.insights import InsightRequest
from app.services.dashboard_service import build_dashboard
from app.services.insights_service import (
    SAMPLE_FINANCIAL_DATA, has_financial_data, generate_combined_insight, record_wellness_insight
)
from app.utils.encryption import AmountCipher, get_amount_cipher

router = APIRouter(prefix="/api/ai", tags=["insights"])
dashboard_router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])
logger = logging.getLogger(__name__)


@router.post("")
def create_insight(
    request_data: Optional[InsightRequest] = None,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Financial wellness and lifestyle recommendations"""
    data = request_data.model_dump(exclude_none=True) if request_data else {}
    if not has_financial_data(data):
        data = dict(SAMPLE_FINANCIAL_DATA)

    insight = generate_combined_insight(data)
    if insight.get("financialWellness"):
        record_wellness_insight(user_id, insight, db)

    return {
        "success": True,
        "data": {
            "financialWellness": insight.get("financialWellness") or "No financial data available",
            "lifestyleRecommendations": insight.get("lifestyleRecommendations") or "No lifestyle data available",
        },
    }


@dashboard_router.get("")
def get_dashboard(
    user_id: int = Depends(require_auth),
    cipher: AmountCipher = Depends(get_amount_cipher),
    db: Session = Depends(get_db)
):
    """Current-month overview from the user's transactions"""
    return {"success": True, "data": build_dashboard(user_id, cipher, db)}
