from __future__ import annotations

from calendar import monthrange
from datetime import date
from decimal import Decimal
import logging
from typing import Any

from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ledgersight.models.enums import AiFeature
from ledgersight.models.prediction import Prediction
from ledgersight.schemas.narrative import NarrativeForecast
from ledgersight.services.ai_keys import CredentialResolver, get_api_key
from ledgersight.services.ai_usage import track_failure, track_usage
from ledgersight.services.history import MonthlyBucket, get_monthly_history, populated_months, shift_month
from ledgersight.services.narrative import CompletionFn, complete, extract_json_object, initialize_client
from ledgersight.services.trends import TrendSummary, calculate_trends
from ledgersight.utils.decimal_math import money


logger = logging.getLogger("ledgersight.forecast")

HISTORY_MONTHS = 12
MIN_POPULATED_MONTHS = 3
FORECAST_CONFIDENCE = Decimal("0.85")
PREDICTION_TYPE = "MONTHLY_FORECAST"
FALLBACK_HEALTH_SCORE = 50
INSUFFICIENT_DATA_REASON = "Insufficient data. At least 3 months of transaction history are required."

FORECAST_SYSTEM_PROMPT = """
You are a senior personal-finance analyst.
Analyse the user's monthly figures and produce a forecast with insights.
Respond ONLY with a valid JSON object, no prose around it.

HISTORICAL DATA:
{history}

MATHEMATICAL TRENDS (linear regression):
- Predicted expense next month: {predicted_expense}
- Predicted income next month: {predicted_income}
- Expense trend: {expense_direction}

REQUIREMENTS:
1. Assess the overall financial health.
2. Identify spending patterns.
3. Suggest a realistic savings goal for next month.
4. Explain the observed trend.

JSON FORMAT:
{{
  "summary": "executive summary (2 sentences)",
  "healthScore": integer 0 to 100,
  "predictedExpense": number,
  "predictedIncome": number,
  "savingsGoal": number,
  "insights": ["insight 1", "insight 2", "insight 3"],
  "recommendation": "main recommended action"
}}
""".strip()

FORECAST_USER_PROMPT = "Generate the predictive analysis for next month."


def build_forecast_messages(history: list[MonthlyBucket], trends: TrendSummary) -> list[dict[str, str]]:
    table = "\n".join(
        f"{row.period}: income {money(row.income):.2f}, expense {money(row.expense):.2f}" for row in history
    )
    system_prompt = FORECAST_SYSTEM_PROMPT.format(
        history=table,
        predicted_expense=f"{money(trends.predicted_expense):.2f}",
        predicted_income=f"{money(trends.predicted_income):.2f}",
        expense_direction="rising" if trends.expense_trend_slope > 0 else "falling",
    )
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": FORECAST_USER_PROMPT},
    ]


def fallback_forecast(trends: TrendSummary) -> NarrativeForecast:
    return NarrativeForecast(
        summary="The AI analysis could not be processed; figures come from the trend estimate.",
        health_score=FALLBACK_HEALTH_SCORE,
        predicted_expense=money(trends.predicted_expense),
        predicted_income=money(trends.predicted_income),
        savings_goal=money(0),
        insights=["Detailed insights could not be generated."],
        recommendation="Review your spending manually.",
    )


def parse_forecast_response(text: str | None, trends: TrendSummary) -> NarrativeForecast:
    payload = extract_json_object(text)
    if payload is None:
        logger.warning("Narrative response had no JSON object; using trend fallback.")
        return fallback_forecast(trends)
    try:
        return NarrativeForecast.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Narrative response failed validation (%s errors); using trend fallback.", exc.error_count())
        return fallback_forecast(trends)


def next_month_window(reference: date) -> tuple[date, date]:
    year, month = shift_month(reference.year, reference.month, 1)
    return date(year, month, 1), date(year, month, monthrange(year, month)[1])


def save_prediction(
    db: Session,
    *,
    user_id: int,
    trends: TrendSummary,
    forecast: NarrativeForecast,
    model: str,
    reference: date,
) -> Prediction:
    period_start, period_end = next_month_window(reference)
    income = money(forecast.predicted_income or trends.predicted_income)
    expenses = money(forecast.predicted_expense or trends.predicted_expense)
    prediction = Prediction(
        user_id=user_id,
        prediction_type=PREDICTION_TYPE,
        period_start=period_start,
        period_end=period_end,
        predicted_income=income,
        predicted_expenses=expenses,
        predicted_balance=money(income - expenses),
        confidence=FORECAST_CONFIDENCE,
        algorithm=f"HYBRID_{model}",
        narrative_payload=forecast.model_dump(mode="json"),
    )
    db.add(prediction)
    db.flush()
    return prediction


def generate_forecast(
    db: Session,
    user_id: int,
    *,
    reference: date | None = None,
    resolve_credentials: CredentialResolver = get_api_key,
    completion: CompletionFn = complete,
) -> dict[str, Any]:
    reference = reference or date.today()
    logger.info("Generating forecast for user %s", user_id)

    history = get_monthly_history(db, user_id, HISTORY_MONTHS, reference=reference)
    if populated_months(history) < MIN_POPULATED_MONTHS:
        return {"available": False, "reason": INSUFFICIENT_DATA_REASON}

    credentials = resolve_credentials(db, user_id, AiFeature.predictive_analytics)
    trends = calculate_trends(history)

    client = initialize_client(credentials)
    try:
        response = completion(client, build_forecast_messages(history, trends))
    except HTTPException as exc:
        track_failure(db, user_id, AiFeature.predictive_analytics, credentials.model, str(exc.detail))
        raise
    forecast = parse_forecast_response(response.content, trends)

    prediction = save_prediction(
        db,
        user_id=user_id,
        trends=trends,
        forecast=forecast,
        model=credentials.model,
        reference=reference,
    )
    track_usage(
        db,
        user_id,
        AiFeature.predictive_analytics,
        response.usage,
        credentials.model,
        related_id=prediction.id,
    )
    return {
        "available": True,
        "forecast": forecast.model_dump(mode="json"),
        "trends": trends.as_dict(),
        "prediction_id": prediction.id,
    }
