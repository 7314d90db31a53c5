from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from ledgersight.models.enums import AnomalySeverity, AnomalyType


GoalStatusName = Literal["COMPLETED", "ON_TRACK", "STALLED"]


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class MonthlyBucketOut(BaseModel):
    period: str
    income: Decimal
    expense: Decimal
    balance: Decimal
    transaction_count: int


class TrendSummaryOut(BaseModel):
    predicted_expense: Decimal
    predicted_income: Decimal
    expense_trend_slope: Decimal
    income_trend_slope: Decimal
    is_expense_anomaly: bool
    last_month: MonthlyBucketOut | None = None


class TrendAnalysisResponse(TrendSummaryOut):
    period: str
    income_growth: Decimal
    expense_growth: Decimal
    history: list[MonthlyBucketOut]


class ForecastResponse(BaseModel):
    available: bool
    reason: str | None = None
    forecast: dict[str, Any] | None = None
    trends: TrendSummaryOut | None = None
    prediction_id: int | None = None


class AnomalyOut(ORMModel):
    id: int
    transaction_id: int
    anomaly_type: AnomalyType
    severity: AnomalySeverity
    score: Decimal
    description: str
    expected_value: Decimal
    actual_value: Decimal
    deviation_pct: Decimal
    historical_average: Decimal
    historical_std_dev: Decimal
    ai_analysis: dict[str, Any] | None = None
    detected_at: datetime
    dismissed: bool
    dismissed_at: datetime | None = None


class AnomalyDetectionRunOut(BaseModel):
    detected: int
    items: list[AnomalyOut]


class ScoreComponentOut(BaseModel):
    score: int
    max: int
    rate: Decimal | None = None
    cv: Decimal | None = None


class HealthBreakdownOut(BaseModel):
    savings_rate: ScoreComponentOut
    consistency: ScoreComponentOut
    budget_health: ScoreComponentOut


class FinancialHealthResponse(BaseModel):
    score: int
    level: str
    breakdown: HealthBreakdownOut


class GoalForecastResponse(BaseModel):
    goal_id: int
    status: GoalStatusName
    remaining: Decimal
    velocity_per_day: Decimal | None = None
    velocity_per_month: Decimal | None = None
    estimated_date: datetime | None = None
    days_to_finish: int | None = None
    message: str | None = None


class UsageFeatureOut(BaseModel):
    tokens: int
    cost: Decimal
    requests: int


class MonthlyUsageResponse(BaseModel):
    total_tokens: int
    total_cost: Decimal
    by_feature: dict[str, UsageFeatureOut]
