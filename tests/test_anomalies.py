from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
import json

from fastapi import HTTPException
import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from ledgersight.db.base import Base
from ledgersight.models.ai import AiUsageMetric
from ledgersight.models.anomaly import Anomaly
from ledgersight.models.enums import AiFeature, AiProvider, AnomalySeverity, TransactionType
from ledgersight.models.transaction import Transaction
from ledgersight.models.user import User
from ledgersight.services.ai_keys import ApiCredentials
from ledgersight.services.ai_usage import TokenUsage
from ledgersight.services.anomalies import (
    AI_ANALYSIS_FAILED,
    MAX_DEVIATION_PCT,
    BaselineStats,
    compute_baseline,
    detect_daily_anomalies,
    dismiss_anomaly,
    list_anomalies,
    score_transaction,
)
from ledgersight.services.narrative import Completion
from ledgersight.utils.decimal_math import money


DAY = date(2026, 6, 30)
RISK_REPLY = {'analysis': 'Looks like a one-off purchase.', 'riskLevel': 'LOW', 'action': 'No action needed.'}


def _session() -> Session:
    engine = create_engine('sqlite+pysqlite:///:memory:', future=True)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)()


def _expense(user_id: int, amount: str, tx_date: date, description: str = 'Shop') -> Transaction:
    return Transaction(
        user_id=user_id,
        tx_type=TransactionType.expense,
        amount=money(amount),
        tx_date=tx_date,
        description=description,
    )


def _user_with_baseline(db: Session, points: int = 40) -> User:
    user = User(email='anomaly@test.com', full_name='Anomaly')
    db.add(user)
    db.flush()
    # alternating 150 / 250 gives mean 200 and population std dev 50
    db.add_all(
        [_expense(user.id, '150.00' if index % 2 else '250.00', DAY - timedelta(days=index + 1)) for index in range(points)]
    )
    db.flush()
    return user


def _credentials(db: Session, user_id: int, feature: AiFeature) -> ApiCredentials:
    return ApiCredentials(api_key='k', provider=AiProvider.gemini, model='gemini-1.5-flash', is_corporate=True)


def _risk_completion(client, messages):
    return Completion(content=json.dumps(RISK_REPLY), usage=TokenUsage(prompt_tokens=40, completion_tokens=20, total_tokens=60))


def test_score_transaction_thresholds() -> None:
    baseline = BaselineStats(mean=Decimal('200'), std_dev=Decimal('50'), count=20)

    high = score_transaction(Decimal('400'), baseline)
    assert high is not None
    assert high.z_score == Decimal('4')
    assert high.severity == AnomalySeverity.high
    assert high.score == Decimal('0.4')

    critical = score_transaction(Decimal('600'), baseline)
    assert critical is not None
    assert critical.severity == AnomalySeverity.critical
    assert critical.score == Decimal('0.8')

    capped = score_transaction(Decimal('1000'), baseline)
    assert capped is not None
    assert capped.score == Decimal('0.99')

    # exactly three deviations is not enough
    assert score_transaction(Decimal('350'), baseline) is None
    assert score_transaction(Decimal('210'), baseline) is None


def test_score_transaction_flags_low_outliers() -> None:
    baseline = BaselineStats(mean=Decimal('200'), std_dev=Decimal('10'), count=20)

    scored = score_transaction(Decimal('150'), baseline)

    assert scored is not None
    assert scored.severity == AnomalySeverity.high


def test_compute_baseline_uses_population_std_dev() -> None:
    db = _session()
    user = _user_with_baseline(db, points=20)

    baseline = compute_baseline(db, user.id, until=DAY)

    assert baseline is not None
    assert baseline.count == 20
    assert baseline.mean == Decimal('200')
    assert baseline.std_dev == Decimal('50')


def test_compute_baseline_requires_ten_points_and_spread() -> None:
    db = _session()
    user = _user_with_baseline(db, points=9)
    assert compute_baseline(db, user.id, until=DAY) is None

    flat = User(email='flat@test.com', full_name='Flat')
    db.add(flat)
    db.flush()
    db.add_all([_expense(flat.id, '80.00', DAY - timedelta(days=index + 1)) for index in range(12)])
    db.flush()
    assert compute_baseline(db, flat.id, until=DAY) is None


def test_compute_baseline_ignores_old_and_non_expense_rows() -> None:
    db = _session()
    user = _user_with_baseline(db, points=10)
    db.add_all(
        [
            _expense(user.id, '90000.00', DAY - timedelta(days=120)),
            Transaction(
                user_id=user.id,
                tx_type=TransactionType.income,
                amount=money('5000.00'),
                tx_date=DAY - timedelta(days=3),
                description='Salary',
            ),
        ]
    )
    db.flush()

    baseline = compute_baseline(db, user.id, until=DAY)

    assert baseline is not None
    assert baseline.count == 10
    assert baseline.mean == Decimal('200')


def test_detect_daily_anomalies_flags_outlier_once() -> None:
    db = _session()
    user = _user_with_baseline(db)
    spike = _expense(user.id, '1000.00', DAY, 'Television')
    normal = _expense(user.id, '200.00', DAY, 'Groceries')
    db.add_all([spike, normal])
    db.flush()

    created = detect_daily_anomalies(
        db, user.id, day=DAY, resolve_credentials=_credentials, completion=_risk_completion
    )

    assert len(created) == 1
    anomaly = created[0]
    assert anomaly.transaction_id == spike.id
    assert anomaly.severity == AnomalySeverity.critical
    assert Decimal('0.5') < anomaly.score < Decimal('0.99')
    assert anomaly.actual_value == Decimal('1000.00')
    assert anomaly.deviation_pct > Decimal('300')
    assert anomaly.ai_analysis == RISK_REPLY
    assert anomaly.dismissed is False

    usage = db.scalar(select(AiUsageMetric))
    assert usage is not None
    assert usage.feature == AiFeature.anomaly_detection
    assert usage.related_entity_id == str(spike.id)

    again = detect_daily_anomalies(
        db, user.id, day=DAY, resolve_credentials=_credentials, completion=_risk_completion
    )
    assert again == []
    assert len(db.scalars(select(Anomaly)).all()) == 1


def test_detect_daily_anomalies_keeps_record_when_classification_fails() -> None:
    db = _session()
    user = _user_with_baseline(db)
    db.add(_expense(user.id, '1000.00', DAY, 'Television'))
    db.flush()

    def broken(client, messages):
        raise RuntimeError('provider exploded')

    created = detect_daily_anomalies(db, user.id, day=DAY, resolve_credentials=_credentials, completion=broken)

    assert len(created) == 1
    assert created[0].ai_analysis == AI_ANALYSIS_FAILED

    failure = db.scalar(select(AiUsageMetric))
    assert failure is not None
    assert failure.success is False
    assert failure.feature == AiFeature.anomaly_detection
    assert failure.model == 'gemini-1.5-flash'
    assert failure.total_tokens == 0
    assert failure.error_message == 'provider exploded'


def test_detect_daily_anomalies_survives_missing_credentials() -> None:
    db = _session()
    user = _user_with_baseline(db)
    db.add(_expense(user.id, '1000.00', DAY, 'Television'))
    db.flush()

    def not_configured(*args, **kwargs):
        raise HTTPException(status_code=412, detail='AI is not configured.')

    created = detect_daily_anomalies(
        db, user.id, day=DAY, resolve_credentials=not_configured, completion=_risk_completion
    )

    assert len(created) == 1
    assert created[0].ai_analysis == AI_ANALYSIS_FAILED
    # no provider call was attempted, so nothing is billed or logged as failed
    assert db.scalars(select(AiUsageMetric)).all() == []



def test_detect_daily_anomalies_bounds_deviation_on_tiny_baseline() -> None:
    db = _session()
    user = User(email='cents@test.com', full_name='Cents')
    db.add(user)
    db.flush()
    # alternating 0.01 / 0.02 gives a mean of a cent and a half
    db.add_all(
        [_expense(user.id, '0.01' if index % 2 else '0.02', DAY - timedelta(days=index + 1)) for index in range(40)]
    )
    # income is scored against the expense baseline but never part of it
    db.add(
        Transaction(
            user_id=user.id,
            tx_type=TransactionType.income,
            amount=money('10000000000000000000.00'),
            tx_date=DAY,
            description='Wire',
        )
    )
    db.flush()

    created = detect_daily_anomalies(
        db, user.id, day=DAY, resolve_credentials=_credentials, completion=_risk_completion
    )

    assert len(created) == 1
    assert created[0].deviation_pct == MAX_DEVIATION_PCT
    column = Anomaly.__table__.c.deviation_pct.type
    assert (column.precision, column.scale) == (24, 4)


def test_detect_daily_anomalies_skips_without_baseline() -> None:
    db = _session()
    user = _user_with_baseline(db, points=5)
    db.add(_expense(user.id, '1000.00', DAY, 'Television'))
    db.flush()

    def completion(client, messages):
        raise AssertionError('no narrative call without a baseline')

    created = detect_daily_anomalies(db, user.id, day=DAY, resolve_credentials=_credentials, completion=completion)

    assert created == []
    assert db.scalars(select(Anomaly)).all() == []


def _stored_anomaly(db: Session, user_id: int, severity: AnomalySeverity, score: str, day_offset: int) -> Anomaly:
    tx = _expense(user_id, '999.00', DAY - timedelta(days=day_offset))
    db.add(tx)
    db.flush()
    anomaly = Anomaly(
        user_id=user_id,
        transaction_id=tx.id,
        severity=severity,
        score=Decimal(score),
        description='Outlier',
        expected_value=money('200'),
        actual_value=money('999'),
        deviation_pct=Decimal('399.5'),
        historical_average=money('200'),
        historical_std_dev=money('50'),
        detected_at=datetime(2026, 6, 30, 12, tzinfo=timezone.utc) - timedelta(days=day_offset),
    )
    db.add(anomaly)
    db.flush()
    return anomaly


def test_list_anomalies_filters_and_hides_dismissed() -> None:
    db = _session()
    user = User(email='list@test.com', full_name='List')
    db.add(user)
    db.flush()
    high = _stored_anomaly(db, user.id, AnomalySeverity.high, '0.35', 3)
    critical = _stored_anomaly(db, user.id, AnomalySeverity.critical, '0.90', 2)
    dismissed = _stored_anomaly(db, user.id, AnomalySeverity.critical, '0.95', 1)
    dismissed.dismissed = True
    db.flush()

    assert [row.id for row in list_anomalies(db, user.id)] == [critical.id, high.id]
    assert [row.id for row in list_anomalies(db, user.id, include_dismissed=True)] == [
        dismissed.id,
        critical.id,
        high.id,
    ]
    assert [row.id for row in list_anomalies(db, user.id, min_severity=AnomalySeverity.critical)] == [critical.id]
    assert [row.id for row in list_anomalies(db, user.id, min_severity=AnomalySeverity.medium)] == [
        critical.id,
        high.id,
    ]
    assert [row.id for row in list_anomalies(db, user.id, min_score=Decimal('0.8'))] == [critical.id]
    assert len(list_anomalies(db, user.id, include_dismissed=True, limit=1)) == 1


def test_dismiss_anomaly_is_one_way_and_owner_scoped() -> None:
    db = _session()
    owner = User(email='owner@test.com', full_name='Owner')
    stranger = User(email='stranger@test.com', full_name='Stranger')
    db.add_all([owner, stranger])
    db.flush()
    anomaly = _stored_anomaly(db, owner.id, AnomalySeverity.high, '0.4', 1)
    first = datetime(2026, 7, 1, 9, tzinfo=timezone.utc)

    dismissed = dismiss_anomaly(db, owner.id, anomaly.id, now=first)
    assert dismissed.dismissed is True
    assert dismissed.dismissed_at == first

    again = dismiss_anomaly(db, owner.id, anomaly.id, now=first + timedelta(days=1))
    assert again.dismissed_at == first

    with pytest.raises(HTTPException) as exc:
        dismiss_anomaly(db, stranger.id, anomaly.id)
    assert exc.value.status_code == 404

    assert list_anomalies(db, owner.id) == []
