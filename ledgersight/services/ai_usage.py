from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledgersight.models.ai import AiUsageMetric
from ledgersight.models.enums import AiFeature


logger = logging.getLogger("ledgersight.ai.usage")

# USD per 1M tokens (input, output).
MODEL_PRICING: dict[str, tuple[Decimal, Decimal]] = {
    "gpt-4o-mini": (Decimal("0.15"), Decimal("0.60")),
    "gpt-4o": (Decimal("5.0"), Decimal("15.0")),
    "gpt-4-turbo": (Decimal("10.0"), Decimal("30.0")),
    "gpt-4": (Decimal("30.0"), Decimal("60.0")),
    "gpt-3.5-turbo": (Decimal("0.5"), Decimal("1.5")),
    "gemini-1.5-flash": (Decimal("0.075"), Decimal("0.30")),
    "gemini-1.5-pro": (Decimal("1.25"), Decimal("5.00")),
}
DEFAULT_PRICING_MODEL = "gpt-4o-mini"
ONE_MILLION = Decimal("1000000")


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


def calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> Decimal:
    input_price, output_price = MODEL_PRICING.get(model, MODEL_PRICING[DEFAULT_PRICING_MODEL])
    return (Decimal(prompt_tokens) / ONE_MILLION) * input_price + (
        Decimal(completion_tokens) / ONE_MILLION
    ) * output_price


def track_usage(
    db: Session,
    user_id: int,
    feature: AiFeature,
    usage: TokenUsage,
    model: str,
    related_id: str | int | None = None,
) -> None:
    """Record one successful provider call. Never raises."""
    try:
        cost = calculate_cost(model, usage.prompt_tokens, usage.completion_tokens)
        with db.begin_nested():
            db.add(
                AiUsageMetric(
                    user_id=user_id,
                    feature=feature,
                    model=model,
                    prompt_tokens=usage.prompt_tokens,
                    completion_tokens=usage.completion_tokens,
                    total_tokens=usage.total_tokens,
                    estimated_cost=cost,
                    related_entity_id=str(related_id) if related_id is not None else None,
                    success=True,
                )
            )
        logger.debug(
            "Tracked AI usage user=%s feature=%s tokens=%s cost=%s",
            user_id,
            feature.value,
            usage.total_tokens,
            cost,
        )
    except Exception:
        logger.exception("Failed to track AI usage for user %s.", user_id)


def track_failure(db: Session, user_id: int, feature: AiFeature, model: str, error_message: str) -> None:
    try:
        with db.begin_nested():
            db.add(
                AiUsageMetric(
                    user_id=user_id,
                    feature=feature,
                    model=model,
                    estimated_cost=Decimal("0"),
                    success=False,
                    error_message=error_message[:500],
                )
            )
    except Exception:
        logger.exception("Failed to track AI failure for user %s.", user_id)


def get_monthly_usage(db: Session, user_id: int, *, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    rows = list(
        db.scalars(
            select(AiUsageMetric).where(
                AiUsageMetric.user_id == user_id,
                AiUsageMetric.created_at >= month_start,
            )
        ).all()
    )
    by_feature: dict[str, dict[str, Any]] = {}
    total_tokens = 0
    total_cost = Decimal("0")
    for row in rows:
        cost = Decimal(str(row.estimated_cost))
        total_tokens += row.total_tokens
        total_cost += cost
        bucket = by_feature.setdefault(row.feature.value, {"tokens": 0, "cost": Decimal("0"), "requests": 0})
        bucket["tokens"] += row.total_tokens
        bucket["cost"] += cost
        bucket["requests"] += 1
    return {"total_tokens": total_tokens, "total_cost": total_cost, "by_feature": by_feature}
