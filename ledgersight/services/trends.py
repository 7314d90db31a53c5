from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Literal

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from ledgersight.services.history import MonthlyBucket, get_monthly_history
from ledgersight.utils.decimal_math import mean, money, pct


TrendPeriod = Literal["3M", "6M", "1Y"]

TREND_PERIOD_MONTHS: dict[str, int] = {"3M": 3, "6M": 6, "1Y": 12}
EXPENSE_SPIKE_FACTOR = Decimal("1.5")


@dataclass(frozen=True)
class TrendEstimate:
    slope: Decimal
    intercept: Decimal
    next_value: Decimal


@dataclass(frozen=True)
class TrendSummary:
    predicted_expense: Decimal
    predicted_income: Decimal
    expense_trend_slope: Decimal
    income_trend_slope: Decimal
    is_expense_anomaly: bool
    last_month: MonthlyBucket | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "predicted_expense": money(self.predicted_expense),
            "predicted_income": money(self.predicted_income),
            "expense_trend_slope": money(self.expense_trend_slope),
            "income_trend_slope": money(self.income_trend_slope),
            "is_expense_anomaly": self.is_expense_anomaly,
            "last_month": self.last_month.as_dict() if self.last_month else None,
        }


def linear_regression(series: list[Decimal]) -> TrendEstimate:
    """Ordinary least squares of ``series`` against x = 0..n-1, projected to x = n."""
    n = len(series)
    if n == 0:
        return TrendEstimate(slope=Decimal("0"), intercept=Decimal("0"), next_value=Decimal("0"))
    x_sum = Decimal(sum(range(n)))
    y_sum = sum(series, Decimal("0"))
    xx_sum = Decimal(sum(index * index for index in range(n)))
    xy_sum = sum((Decimal(index) * series[index] for index in range(n)), Decimal("0"))
    denom = Decimal(n) * xx_sum - x_sum * x_sum
    if denom == 0:
        # single point: flat line through it
        slope = Decimal("0")
    else:
        slope = (Decimal(n) * xy_sum - x_sum * y_sum) / denom
    intercept = (y_sum - slope * x_sum) / Decimal(n)
    return TrendEstimate(slope=slope, intercept=intercept, next_value=slope * Decimal(n) + intercept)


def calculate_trends(history: list[MonthlyBucket]) -> TrendSummary:
    expenses = [row.expense for row in history]
    incomes = [row.income for row in history]
    expense_trend = linear_regression(expenses)
    income_trend = linear_regression(incomes)

    last_month = history[-1] if history else None
    avg_expense = mean(expenses)
    is_expense_anomaly = last_month is not None and last_month.expense > avg_expense * EXPENSE_SPIKE_FACTOR

    return TrendSummary(
        predicted_expense=max(Decimal("0"), expense_trend.next_value),
        predicted_income=max(Decimal("0"), income_trend.next_value),
        expense_trend_slope=expense_trend.slope,
        income_trend_slope=income_trend.slope,
        is_expense_anomaly=is_expense_anomaly,
        last_month=last_month,
    )


def growth_rate(values: list[Decimal]) -> Decimal:
    if len(values) < 2:
        return pct(0)
    first = values[0] if values[0] != 0 else Decimal("1")
    last = values[-1]
    return pct((last - first) / first * Decimal("100"))


def calculate_trends_analysis(
    db: Session,
    user_id: int,
    period: str = "6M",
    *,
    reference: date | None = None,
) -> dict[str, Any]:
    months = TREND_PERIOD_MONTHS.get(period)
    if months is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="period must be one of 3M, 6M, 1Y.")
    history = get_monthly_history(db, user_id, months, reference=reference)
    trends = calculate_trends(history)
    return {
        "period": period,
        **trends.as_dict(),
        "income_growth": growth_rate([row.income for row in history]),
        "expense_growth": growth_rate([row.expense for row in history]),
        "history": [row.as_dict() for row in history],
    }
