from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Callable

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledgersight.core.config import get_settings
from ledgersight.models.ai import AiUsageMetric, UserAiConfig
from ledgersight.models.enums import AiFeature, AiProvider, SubscriptionPlan
from ledgersight.models.user import User


logger = logging.getLogger("ledgersight.ai.keys")

PAID_PLANS = {SubscriptionPlan.pro, SubscriptionPlan.family}


@dataclass(frozen=True)
class ApiCredentials:
    api_key: str
    provider: AiProvider
    model: str
    is_corporate: bool


CredentialResolver = Callable[[Session, int, AiFeature], ApiCredentials]


def provider_for_model(model: str) -> AiProvider:
    return AiProvider.openai if model.startswith("gpt") else AiProvider.gemini


def select_model(config: UserAiConfig | None, feature: AiFeature) -> str:
    settings = get_settings()
    if feature == AiFeature.categorization:
        return (config.categorization_model if config else None) or settings.default_assistant_model
    if feature == AiFeature.recommendations:
        return (config.recommendation_model if config else None) or settings.default_assistant_model
    return (config.analytics_model if config else None) or settings.default_analytics_model


def _corporate_key(provider: AiProvider) -> str | None:
    settings = get_settings()
    key = settings.corporate_openai_key if provider == AiProvider.openai else settings.corporate_gemini_key
    return key.strip() or None


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def tokens_used_this_month(db: Session, user_id: int, *, now: datetime | None = None) -> int:
    now = now or datetime.now(timezone.utc)
    total = db.scalar(
        select(func.coalesce(func.sum(AiUsageMetric.total_tokens), 0)).where(
            AiUsageMetric.user_id == user_id,
            AiUsageMetric.created_at >= _month_start(now),
        )
    )
    return int(total or 0)


def check_token_limit(
    db: Session,
    user_id: int,
    custom_limit: int | None = None,
    *,
    now: datetime | None = None,
) -> None:
    limit = custom_limit or get_settings().default_monthly_token_limit
    used = tokens_used_this_month(db, user_id, now=now)
    if used >= limit:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Monthly token limit exceeded ({used}/{limit}). Upgrade the plan or wait for next month.",
        )


def get_api_key(
    db: Session,
    user_id: int,
    feature: AiFeature,
    *,
    now: datetime | None = None,
) -> ApiCredentials:
    """Resolve the key, provider and model a user may call for ``feature``.

    Paid plans and configs flagged for corporate usage get the platform key;
    everyone else brings their own key and is held to a monthly token quota.
    """
    config = db.scalar(select(UserAiConfig).where(UserAiConfig.user_id == user_id))
    user = db.get(User, user_id)

    model = select_model(config, feature)
    provider = provider_for_model(model)
    is_paid = user is not None and user.plan in PAID_PLANS
    uses_corporate = bool(config and config.uses_corporate_key) or is_paid

    if uses_corporate:
        key = _corporate_key(provider)
        if key is None:
            raise HTTPException(
                status_code=status.HTTP_412_PRECONDITION_FAILED,
                detail=f"Corporate {provider.value} key is not configured. Contact support.",
            )
        logger.debug("Using corporate %s key for user %s (%s)", provider.value, user_id, feature.value)
        return ApiCredentials(api_key=key, provider=provider, model=model, is_corporate=True)

    if config is None:
        raise HTTPException(
            status_code=status.HTTP_412_PRECONDITION_FAILED,
            detail="AI is not configured. Set it up under Settings > AI.",
        )
    key = config.openai_api_key if provider == AiProvider.openai else config.gemini_api_key
    if not key or not key.strip():
        raise HTTPException(
            status_code=status.HTTP_412_PRECONDITION_FAILED,
            detail=f"{provider.value} API key is not configured for model {model}.",
        )

    check_token_limit(db, user_id, config.monthly_token_limit, now=now)
    return ApiCredentials(api_key=key.strip(), provider=provider, model=model, is_corporate=False)
