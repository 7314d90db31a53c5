from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_CEILING
import enum
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from ledgersight.models.goal import Goal, GoalContribution
from ledgersight.utils.decimal_math import money


VELOCITY_WINDOW_DAYS = 90
CONTRIBUTION_SAMPLE = 90
DAYS_PER_MONTH = Decimal("30")


class GoalStatus(str, enum.Enum):
    completed = "COMPLETED"
    on_track = "ON_TRACK"
    stalled = "STALLED"


@dataclass(frozen=True)
class GoalForecast:
    goal_id: int
    status: GoalStatus
    remaining: Decimal
    velocity_per_day: Decimal | None = None
    velocity_per_month: Decimal | None = None
    estimated_date: datetime | None = None
    days_to_finish: int | None = None
    message: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "goal_id": self.goal_id,
            "status": self.status.value,
            "remaining": money(self.remaining),
            "velocity_per_day": money(self.velocity_per_day) if self.velocity_per_day is not None else None,
            "velocity_per_month": money(self.velocity_per_month) if self.velocity_per_month is not None else None,
            "estimated_date": self.estimated_date,
            "days_to_finish": self.days_to_finish,
            "message": self.message,
        }


def _goal_or_404(db: Session, goal_id: int, user_id: int | None) -> Goal:
    goal = db.get(Goal, goal_id)
    if goal is None or (user_id is not None and goal.user_id != user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found.")
    return goal


def forecast_goal_achievement(
    db: Session,
    goal_id: int,
    *,
    user_id: int | None = None,
    now: datetime | None = None,
) -> GoalForecast:
    now = now or datetime.now(timezone.utc)
    goal = _goal_or_404(db, goal_id, user_id)

    remaining = money(Decimal(str(goal.target_amount)) - Decimal(str(goal.current_amount)))
    if remaining <= 0:
        return GoalForecast(goal_id=goal.id, status=GoalStatus.completed, remaining=money(0), estimated_date=now)

    contributions = list(
        db.scalars(
            select(GoalContribution)
            .where(GoalContribution.goal_id == goal.id)
            .order_by(GoalContribution.contributed_on.desc(), GoalContribution.id.desc())
            .limit(CONTRIBUTION_SAMPLE)
        ).all()
    )
    cutoff = now.date() - timedelta(days=VELOCITY_WINDOW_DAYS)
    recent_total = sum(
        (Decimal(str(row.amount)) for row in contributions if row.contributed_on >= cutoff),
        Decimal("0"),
    )
    # fixed divisor: idle days inside the window slow the projection down
    velocity_per_day = recent_total / Decimal(VELOCITY_WINDOW_DAYS)

    if velocity_per_day <= 0:
        return GoalForecast(
            goal_id=goal.id,
            status=GoalStatus.stalled,
            remaining=remaining,
            velocity_per_day=Decimal("0"),
            message=f"No contributions in the last {VELOCITY_WINDOW_DAYS} days.",
        )

    days_to_finish = remaining / velocity_per_day
    try:
        estimated_date = now + timedelta(days=float(days_to_finish))
    except OverflowError:
        # beyond the calendar range; the day count is still reported
        estimated_date = None
    return GoalForecast(
        goal_id=goal.id,
        status=GoalStatus.on_track,
        remaining=remaining,
        velocity_per_day=velocity_per_day,
        velocity_per_month=velocity_per_day * DAYS_PER_MONTH,
        estimated_date=estimated_date,
        days_to_finish=int(days_to_finish.to_integral_value(rounding=ROUND_CEILING)),
    )
