"""AI insights via Groq's OpenAI-compatible chat API

Every generator except the diary reply degrades to a fixed fallback when the
model is unavailable or returns something that is not the expected JSON.
"""
import json
import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

from openai import OpenAI, OpenAIError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.ai_insight import AiInsight

logger = logging.getLogger(__name__)

NO_DATA = "No data available"

# Used when the caller sends no usable numbers
SAMPLE_FINANCIAL_DATA = {
    "monthlyIncome": 5800,
    "monthlyExpenses": 4200,
    "totalSaved": 18400,
    "totalDebt": 1200,
    "savingsChange": 8,
    "expenseChange": -2,
    "spendingCategories": [
        {"category": "Food", "amount": 1200},
        {"category": "Transport", "amount": 400},
        {"category": "Entertainment", "amount": 250},
        {"category": "Savings", "amount": 1800},
    ],
}

COMBINED_FALLBACK = {
    "financialWellness": None,
    "lifestyleRecommendations": None,
    "error": "Failed to generate insights",
}

NO_GOALS_MESSAGE = "No goals found yet. Start by creating one to let Rumina track your progress."
GOALS_UNAVAILABLE_MESSAGE = "Unable to generate insights right now. Please try again later."


class InsightUnavailable(Exception):
    """The language model could not produce a usable answer"""


@lru_cache(maxsize=1)
def get_insights_client() -> Optional[OpenAI]:
    """Shared client, or None when no API key is configured"""
    if not settings.GROQ_API_KEY:
        return None
    return OpenAI(
        api_key=settings.GROQ_API_KEY,
        base_url=settings.GROQ_BASE_URL,
        timeout=settings.INSIGHTS_TIMEOUT,
    )


def _complete(prompt: str, temperature: float, json_output: bool) -> str:
    client = get_insights_client()
    if client is None:
        raise InsightUnavailable("GROQ_API_KEY is not configured")

    kwargs: Dict[str, Any] = {
        "model": settings.INSIGHTS_MODEL,
        "messages": [{"role": "user", "content": prompt}],
        "temperature": temperature,
    }
    if json_output:
        kwargs["response_format"] = {"type": "json_object"}

    try:
        response = client.chat.completions.create(**kwargs)
    except OpenAIError as e:
        raise InsightUnavailable(f"Model request failed: {e}") from e

    content = response.choices[0].message.content if response.choices else None
    if not content or not content.strip():
        raise InsightUnavailable("Model returned an empty answer")
    return content.strip()


def _complete_json(prompt: str, temperature: float) -> Dict[str, Any]:
    raw = _complete(prompt, temperature, json_output=True)
    try:
        parsed = json.loads(raw)
    except ValueError as e:
        raise InsightUnavailable("Model returned invalid JSON") from e
    if not isinstance(parsed, dict):
        raise InsightUnavailable("Model returned a non-object JSON value")
    return parsed


def has_financial_data(data: Dict[str, Any]) -> bool:
    return all(data.get(key) for key in ("monthlyIncome", "monthlyExpenses", "totalSaved"))


# ============================================================================
# GENERATORS
# ============================================================================

def generate_combined_insight(data: Dict[str, Any]) -> Dict[str, Any]:
    """Financial wellness evaluation plus lifestyle budget recommendations"""
    prompt = f"""You are Rumina, a warm and practical personal finance coach.
Evaluate the user's financial wellness and suggest lifestyle budgets (amounts in RM).

User data:
- Monthly income: RM {data.get('monthlyIncome')}
- Monthly expenses: RM {data.get('monthlyExpenses')}
- Total saved: RM {data.get('totalSaved')}
- Total debt: RM {data.get('totalDebt') or 0}
- Savings change: {data.get('savingsChange') or 0}%
- Expense change: {data.get('expenseChange') or 0}%
- Spending breakdown: {json.dumps(data.get('spendingCategories') or [])}

Reply with one JSON object:
{{
  "financialWellness": {{
    "score": 0-100,
    "percentile": "You're doing better than X% of users",
    "ratings": {{
      "savingsRate": {{"score": 0-100, "description": "..."}},
      "debtManagement": {{"score": 0-100, "description": "..."}},
      "emergencyFund": {{"score": 0-100, "description": "..."}},
      "expenseControl": {{"score": 0-100, "description": "..."}}
    }}
  }},
  "lifestyleRecommendations": {{
    "dailyMeals": {{"recommendedDailyBudget": "RM X", "breakdown": {{"breakfast": "RM X", "lunch": "RM X", "dinner": "RM X"}}}},
    "carBudget": {{"recommendedCarPrice": "RM X", "monthlyCosts": {{"loanPayment": "RM X", "fuel": "RM X", "insuranceService": "RM X", "total": "RM X"}}}},
    "homeBudget": {{"recommendedPropertyPrice": "RM X", "monthlyCosts": {{"mortgage": "RM X", "utilitiesMaintenance": "RM X", "total": "RM X"}}}}
  }}
}}"""
    try:
        return _complete_json(prompt, temperature=0.6)
    except InsightUnavailable as e:
        logger.warning(f"Combined insight unavailable: {e}")
        return dict(COMBINED_FALLBACK)


def generate_goal_progress_insight(goals: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Per-goal progress commentary"""
    if not goals:
        return {"ruminaInsight": {"message": NO_GOALS_MESSAGE}}

    prompt = f"""You are Rumina, an encouraging savings coach.
For each goal below give its completion percentage, the amount still needed (RM),
a status ("On Track" when at least 70% complete, otherwise "Behind"),
a projected completion month and one sentence of advice.

Goals:
{json.dumps(goals, indent=2, default=str)}

Reply with one JSON object:
{{"ruminaInsight": [{{"goal": "...", "status": "...", "progress": "..%", "stillNeeded": "RM X", "projectedCompletion": "Mon YYYY", "advice": "..."}}]}}"""
    try:
        result = _complete_json(prompt, temperature=0.6)
    except InsightUnavailable as e:
        logger.warning(f"Goal insight unavailable: {e}")
        return {"ruminaInsight": {"message": GOALS_UNAVAILABLE_MESSAGE}}

    if "ruminaInsight" not in result:
        return {"ruminaInsight": {"message": GOALS_UNAVAILABLE_MESSAGE}}
    return result


def generate_summary_insight(data: Dict[str, Any]) -> Dict[str, Any]:
    """Short motivational lines for the dashboard"""
    prompt = f"""You are Rumina, a friendly finance coach summarising the user's month.

- Monthly income: RM {data.get('monthlyIncome')}
- Monthly expenses: RM {data.get('monthlyExpenses')}
- Savings this month: RM {data.get('savingsThisMonth')}
- Top expense categories: {json.dumps(data.get('topCategories') or [])}

Reply with one JSON object: {{"summaryInsights": ["...", "...", "..."]}}"""
    try:
        result = _complete_json(prompt, temperature=0.7)
    except InsightUnavailable as e:
        logger.warning(f"Summary insight unavailable: {e}")
        return {"summaryInsights": []}

    insights = result.get("summaryInsights")
    if not isinstance(insights, list):
        return {"summaryInsights": []}
    return {"summaryInsights": [str(line) for line in insights]}


def generate_diary_response(content: str) -> str:
    """Plain-text reply to a diary entry

    Raises:
        InsightUnavailable: If no reply could be generated
    """
    prompt = f"""You are Rumina, the user's financial diary companion.
Read the entry below and reply kindly. If the user sounds worried, acknowledge it and give
practical advice; if they ask a question, answer it directly.

Diary entry:
\"\"\"{content}\"\"\"

Reply in plain text, no JSON."""
    return _complete(prompt, temperature=0.7, json_output=False)


# ============================================================================
# PERSISTENCE
# ============================================================================

def _rating(insight: Dict[str, Any], key: str) -> Dict[str, Any]:
    ratings = (insight.get("financialWellness") or {}).get("ratings") or {}
    rating = ratings.get(key)
    return rating if isinstance(rating, dict) else {}


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def record_wellness_insight(user_id: int, insight: Dict[str, Any], db: Session) -> Optional[AiInsight]:
    """Keep a snapshot of a wellness evaluation; storage failures are logged, not raised"""
    wellness = insight.get("financialWellness") or {}
    row = AiInsight(
        user_id=user_id,
        wellness_score=_number(wellness.get("score")),
        savings_rate=_number(_rating(insight, "savingsRate").get("score")),
        debt_management=str(_rating(insight, "debtManagement").get("description") or NO_DATA)[:500],
        emergency_fund=str(_rating(insight, "emergencyFund").get("description") or NO_DATA)[:500],
        expense_control=str(_rating(insight, "expenseControl").get("description") or NO_DATA)[:500],
        payload=insight,
    )
    try:
        db.add(row)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"AI insight for user {user_id} not stored: {e}")
        return None
    return row
