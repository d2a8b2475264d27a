"""Dashboard aggregation over decrypted transactions"""
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.goal import Goal
from app.models.transaction import Transaction
from app.services.insights_service import generate_summary_insight
from app.services.transaction_service import decrypt_amount, summarize
from app.utils.encryption import AmountCipher

logger = logging.getLogger(__name__)

TOP_CATEGORY_COUNT = 5


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def month_start(now: datetime) -> datetime:
    return _as_utc(now).replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def top_expense_categories(transactions: List[Transaction], cipher: AmountCipher) -> List[Dict]:
    totals: Dict[str, float] = defaultdict(float)
    for transaction in transactions:
        if transaction.type == "expense":
            totals[transaction.category] += decrypt_amount(transaction, cipher)
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return [{"category": category, "amount": amount} for category, amount in ranked[:TOP_CATEGORY_COUNT]]


def build_dashboard(user_id: int, cipher: AmountCipher, db: Session, now: Optional[datetime] = None) -> Dict:
    """Current-month overview, charts and AI summary lines"""
    start = month_start(now or datetime.now(timezone.utc))
    transactions = [
        t for t in db.query(Transaction).filter(Transaction.user_id == user_id).all()
        if t.date and _as_utc(t.date) >= start
    ]

    totals = summarize(transactions, cipher)
    top_categories = top_expense_categories(transactions, cipher)
    total_saved = db.query(func.coalesce(func.sum(Goal.saved_amount), 0.0)).filter(Goal.user_id == user_id).scalar()

    insight = generate_summary_insight({
        "monthlyIncome": totals["income"],
        "monthlyExpenses": totals["expense"],
        "savingsThisMonth": totals["savings"],
        "topCategories": top_categories,
    })

    return {
        "financialOverview": {
            "monthlyIncome": {"amount": f"RM {totals['income']:.2f}"},
            "monthlyExpenses": {"amount": f"RM {totals['expense']:.2f}"},
            "savingsThisMonth": {"amount": f"RM {totals['savings']:.2f}"},
            "totalSaved": {"amount": f"RM {float(total_saved):.2f}", "note": "Lifetime total"},
        },
        "charts": {
            "incomeVsExpense": {"income": totals["income"], "expense": totals["expense"]},
            "topExpenseCategories": top_categories,
        },
        "insights": insight.get("summaryInsights", []),
    }
