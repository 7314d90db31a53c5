from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledgersight.models.budget import Budget
from ledgersight.models.enums import BudgetPeriod
from ledgersight.services.history import MonthlyBucket, get_monthly_history
from ledgersight.utils.decimal_math import mean, pct, population_std


HEALTH_WINDOW_MONTHS = 3
SAVINGS_MAX = 40
CONSISTENCY_MAX = 30
BUDGET_MAX = 30
NEUTRAL_BUDGET_SCORE = 15
NEGATIVE_MONTH_PENALTY = 10

SAVINGS_TIERS: list[tuple[Decimal, int]] = [
    (Decimal("20"), 40),
    (Decimal("10"), 30),
    (Decimal("5"), 15),
]
CONSISTENCY_TIERS: list[tuple[Decimal, int]] = [
    (Decimal("0.1"), 30),
    (Decimal("0.2"), 20),
    (Decimal("0.3"), 10),
]
LEVELS: list[tuple[int, str]] = [
    (80, "DIAMANTE"),
    (60, "PLATINA"),
    (40, "OURO"),
    (20, "PRATA"),
]


@dataclass(frozen=True)
class HealthScoreBreakdown:
    savings_rate: Decimal
    savings_score: int
    cv: Decimal
    consistency_score: int
    budget_score: int
    score: int
    level: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "level": self.level,
            "breakdown": {
                "savings_rate": {"score": self.savings_score, "max": SAVINGS_MAX, "rate": pct(self.savings_rate)},
                "consistency": {"score": self.consistency_score, "max": CONSISTENCY_MAX, "cv": pct(self.cv)},
                "budget_health": {"score": self.budget_score, "max": BUDGET_MAX},
            },
        }


def savings_rate(history: list[MonthlyBucket]) -> Decimal:
    total_income = sum((row.income for row in history), Decimal("0"))
    total_expense = sum((row.expense for row in history), Decimal("0"))
    if total_income == 0:
        return Decimal("0")
    return (total_income - total_expense) / total_income * Decimal("100")


def savings_score(rate: Decimal) -> int:
    for floor, points in SAVINGS_TIERS:
        if rate >= floor:
            return points
    return 5 if rate > 0 else 0


def expense_cv(history: list[MonthlyBucket]) -> Decimal:
    expenses = [row.expense for row in history]
    avg = mean(expenses) or Decimal("1")
    return population_std(expenses) / avg


def consistency_score(cv: Decimal) -> int:
    for ceiling, points in CONSISTENCY_TIERS:
        if cv < ceiling:
            return points
    return 5


def budget_score(history: list[MonthlyBucket], active_budgets: int) -> int:
    if active_budgets == 0:
        return NEUTRAL_BUDGET_SCORE
    negative_months = sum(1 for row in history if row.balance < 0)
    return max(0, BUDGET_MAX - negative_months * NEGATIVE_MONTH_PENALTY)


def level_for(score: int) -> str:
    for floor, level in LEVELS:
        if score >= floor:
            return level
    return "BRONZE"


def score_history(history: list[MonthlyBucket], active_budgets: int) -> HealthScoreBreakdown:
    rate = savings_rate(history)
    cv = expense_cv(history)
    s_score = savings_score(rate)
    c_score = consistency_score(cv)
    b_score = budget_score(history, active_budgets)
    total = s_score + c_score + b_score
    return HealthScoreBreakdown(
        savings_rate=rate,
        savings_score=s_score,
        cv=cv,
        consistency_score=c_score,
        budget_score=b_score,
        score=total,
        level=level_for(total),
    )


def count_active_monthly_budgets(db: Session, user_id: int) -> int:
    total = db.scalar(
        select(func.count(Budget.id)).where(
            Budget.user_id == user_id,
            Budget.period == BudgetPeriod.monthly,
            Budget.is_active.is_(True),
        )
    )
    return int(total or 0)


def calculate_financial_health_score(
    db: Session,
    user_id: int,
    *,
    reference: date | None = None,
) -> HealthScoreBreakdown:
    history = get_monthly_history(db, user_id, HEALTH_WINDOW_MONTHS, reference=reference)
    return score_history(history, count_active_monthly_budgets(db, user_id))
