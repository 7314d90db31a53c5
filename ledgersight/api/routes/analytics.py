from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ledgersight.api.deps import get_current_user, get_db
from ledgersight.models.enums import AnomalySeverity
from ledgersight.models.user import User
from ledgersight.schemas.analytics import (
    AnomalyDetectionRunOut,
    AnomalyOut,
    FinancialHealthResponse,
    ForecastResponse,
    GoalForecastResponse,
    MonthlyUsageResponse,
    TrendAnalysisResponse,
)
from ledgersight.services.ai_usage import get_monthly_usage
from ledgersight.services.anomalies import detect_daily_anomalies, dismiss_anomaly, list_anomalies
from ledgersight.services.forecast import generate_forecast
from ledgersight.services.goals import forecast_goal_achievement
from ledgersight.services.health import calculate_financial_health_score
from ledgersight.services.trends import calculate_trends_analysis


router = APIRouter(prefix="/ai", tags=["analytics"])


@router.get("/analytics/forecast", response_model=ForecastResponse)
def get_forecast(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ForecastResponse:
    try:
        payload = generate_forecast(db, current_user.id)
    except HTTPException:
        # keep the failed-call usage row
        db.commit()
        raise
    db.commit()
    return ForecastResponse(**payload)


@router.get("/analytics/trends", response_model=TrendAnalysisResponse)
def get_trends(
    period: str = Query(default="6M", pattern="^(3M|6M|1Y)$"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> TrendAnalysisResponse:
    return TrendAnalysisResponse(**calculate_trends_analysis(db, current_user.id, period))


@router.get("/analytics/anomalies", response_model=list[AnomalyOut])
def get_anomalies(
    min_severity: AnomalySeverity | None = Query(default=None),
    min_score: Decimal | None = Query(default=None, ge=Decimal("0"), le=Decimal("1")),
    include_dismissed: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[AnomalyOut]:
    rows = list_anomalies(
        db,
        current_user.id,
        min_severity=min_severity,
        min_score=min_score,
        include_dismissed=include_dismissed,
        limit=limit,
    )
    return [AnomalyOut.model_validate(row) for row in rows]


@router.post("/analytics/anomalies/detect", response_model=AnomalyDetectionRunOut)
def run_anomaly_detection(
    day: date | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AnomalyDetectionRunOut:
    created = detect_daily_anomalies(db, current_user.id, day=day)
    db.commit()
    items = [AnomalyOut.model_validate(row) for row in created]
    return AnomalyDetectionRunOut(detected=len(items), items=items)


@router.post("/analytics/anomalies/{anomaly_id}/dismiss", response_model=AnomalyOut)
def post_dismiss_anomaly(
    anomaly_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AnomalyOut:
    anomaly = dismiss_anomaly(db, current_user.id, anomaly_id)
    db.commit()
    return AnomalyOut.model_validate(anomaly)


@router.get("/analytics/financial-health", response_model=FinancialHealthResponse)
def get_financial_health(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> FinancialHealthResponse:
    breakdown = calculate_financial_health_score(db, current_user.id)
    return FinancialHealthResponse(**breakdown.as_dict())


@router.get("/analytics/goals/{goal_id}/forecast", response_model=GoalForecastResponse)
def get_goal_forecast(
    goal_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> GoalForecastResponse:
    forecast = forecast_goal_achievement(db, goal_id, user_id=current_user.id)
    return GoalForecastResponse(**forecast.as_dict())


@router.get("/usage", response_model=MonthlyUsageResponse)
def get_usage(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MonthlyUsageResponse:
    return MonthlyUsageResponse(**get_monthly_usage(db, current_user.id))
