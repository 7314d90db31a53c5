from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator


MAX_INSIGHTS = 3


class NarrativeForecast(BaseModel):
    """Shape the forecast prompt asks the provider to answer with."""

    model_config = ConfigDict(populate_by_name=True)

    summary: str = Field(min_length=1)
    health_score: int = Field(alias="healthScore", ge=0, le=100)
    predicted_expense: Decimal = Field(alias="predictedExpense")
    predicted_income: Decimal = Field(alias="predictedIncome")
    savings_goal: Decimal = Field(alias="savingsGoal")
    insights: list[str] = Field(default_factory=list)
    recommendation: str

    @field_validator("insights")
    @classmethod
    def keep_first_insights(cls, value: list[str]) -> list[str]:
        return [item for item in value if item.strip()][:MAX_INSIGHTS]


class AnomalyRiskAnalysis(BaseModel):
    analysis: str
    risk_level: str = Field(alias="riskLevel")
    action: str

    model_config = ConfigDict(populate_by_name=True)
