from datetime import datetime, timezone
from decimal import Decimal

from fastapi import HTTPException
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from ledgersight.core.config import get_settings
from ledgersight.db.base import Base
from ledgersight.models.ai import AiUsageMetric, UserAiConfig
from ledgersight.models.enums import AiFeature, AiProvider, SubscriptionPlan
from ledgersight.models.user import User
from ledgersight.services.ai_keys import get_api_key, tokens_used_this_month
from ledgersight.services.ai_usage import TokenUsage, calculate_cost, get_monthly_usage, track_failure, track_usage


NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv('CORPORATE_GEMINI_KEY', raising=False)
    monkeypatch.delenv('CORPORATE_OPENAI_KEY', raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _session() -> Session:
    engine = create_engine('sqlite+pysqlite:///:memory:', future=True)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)()


def _user(db: Session, plan: SubscriptionPlan = SubscriptionPlan.free, **config) -> User:
    user = User(email=f'{plan.value.lower()}@test.com', full_name='Keys', plan=plan)
    db.add(user)
    db.flush()
    if config:
        db.add(UserAiConfig(user_id=user.id, **config))
        db.flush()
    return user


def _usage(db: Session, user_id: int, tokens: int, created_at: datetime, feature=AiFeature.predictive_analytics) -> None:
    db.add(
        AiUsageMetric(
            user_id=user_id,
            feature=feature,
            model='gemini-1.5-flash',
            prompt_tokens=tokens // 2,
            completion_tokens=tokens - tokens // 2,
            total_tokens=tokens,
            estimated_cost=Decimal('0.001'),
            created_at=created_at,
        )
    )
    db.flush()


def test_unconfigured_free_user_is_rejected() -> None:
    db = _session()
    user = _user(db)

    with pytest.raises(HTTPException) as exc:
        get_api_key(db, user.id, AiFeature.predictive_analytics, now=NOW)

    assert exc.value.status_code == 412


def test_own_key_is_returned_for_default_analytics_model() -> None:
    db = _session()
    user = _user(db, gemini_api_key='  user-gemini  ')

    credentials = get_api_key(db, user.id, AiFeature.predictive_analytics, now=NOW)

    assert credentials.api_key == 'user-gemini'
    assert credentials.provider == AiProvider.gemini
    assert credentials.model == 'gemini-1.5-flash'
    assert credentials.is_corporate is False


def test_gpt_model_needs_openai_key() -> None:
    db = _session()
    user = _user(db, analytics_model='gpt-4o', gemini_api_key='user-gemini')

    with pytest.raises(HTTPException) as exc:
        get_api_key(db, user.id, AiFeature.anomaly_detection, now=NOW)

    assert exc.value.status_code == 412


def test_monthly_quota_blocks_own_key() -> None:
    db = _session()
    user = _user(db, gemini_api_key='user-gemini', monthly_token_limit=100)
    _usage(db, user.id, 80, datetime(2026, 10, 2, tzinfo=timezone.utc))
    _usage(db, user.id, 5000, datetime(2026, 9, 28, tzinfo=timezone.utc))

    assert tokens_used_this_month(db, user.id, now=NOW) == 80
    assert get_api_key(db, user.id, AiFeature.predictive_analytics, now=NOW).api_key == 'user-gemini'

    _usage(db, user.id, 30, datetime(2026, 10, 10, tzinfo=timezone.utc))
    with pytest.raises(HTTPException) as exc:
        get_api_key(db, user.id, AiFeature.predictive_analytics, now=NOW)

    assert exc.value.status_code == 429


def test_paid_plan_uses_corporate_key(monkeypatch: pytest.MonkeyPatch) -> None:
    db = _session()
    user = _user(db, SubscriptionPlan.pro)

    with pytest.raises(HTTPException) as exc:
        get_api_key(db, user.id, AiFeature.predictive_analytics, now=NOW)
    assert exc.value.status_code == 412

    monkeypatch.setenv('CORPORATE_GEMINI_KEY', 'corp-gemini')
    get_settings.cache_clear()
    credentials = get_api_key(db, user.id, AiFeature.predictive_analytics, now=NOW)

    assert credentials.api_key == 'corp-gemini'
    assert credentials.is_corporate is True


def test_corporate_flag_on_free_plan_skips_quota(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv('CORPORATE_OPENAI_KEY', 'corp-openai')
    db = _session()
    user = _user(db, uses_corporate_key=True, recommendation_model=None, monthly_token_limit=1)
    _usage(db, user.id, 10, datetime(2026, 10, 5, tzinfo=timezone.utc))

    credentials = get_api_key(db, user.id, AiFeature.recommendations, now=NOW)

    assert credentials.provider == AiProvider.openai
    assert credentials.model == 'gpt-4o-mini'
    assert credentials.api_key == 'corp-openai'


def test_calculate_cost_uses_model_pricing() -> None:
    assert calculate_cost('gemini-1.5-flash', 1_000_000, 1_000_000) == Decimal('0.375')
    assert calculate_cost('unknown-model', 2_000_000, 0) == Decimal('0.30')


def test_usage_tracking_never_raises_and_sums_by_feature() -> None:
    db = _session()
    user = _user(db)

    track_usage(
        db,
        user.id,
        AiFeature.anomaly_detection,
        TokenUsage(prompt_tokens=100, completion_tokens=50, total_tokens=150),
        'gemini-1.5-flash',
        related_id=7,
    )
    track_failure(db, user.id, AiFeature.predictive_analytics, 'gemini-1.5-flash', 'timeout')
    # broken payload is logged and swallowed
    track_usage(db, user.id, AiFeature.anomaly_detection, None, 'gemini-1.5-flash')

    summary = get_monthly_usage(db, user.id)

    assert summary['total_tokens'] == 150
    assert summary['by_feature']['ANOMALY_DETECTION']['requests'] == 1
    assert summary['by_feature']['PREDICTIVE_ANALYTICS'] == {'tokens': 0, 'cost': Decimal('0'), 'requests': 1}
