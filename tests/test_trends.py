from datetime import date
from decimal import Decimal

from fastapi import HTTPException
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from ledgersight.db.base import Base
from ledgersight.models.enums import TransactionType
from ledgersight.models.transaction import Transaction
from ledgersight.models.user import User
from ledgersight.services.history import MonthlyBucket
from ledgersight.services.trends import (
    calculate_trends,
    calculate_trends_analysis,
    growth_rate,
    linear_regression,
)
from ledgersight.utils.decimal_math import money


def _session() -> Session:
    engine = create_engine('sqlite+pysqlite:///:memory:', future=True)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)()


def _history(incomes: list[str], expenses: list[str]) -> list[MonthlyBucket]:
    return [
        MonthlyBucket(period=f'2026-{index + 1:02d}', income=money(income), expense=money(expense), transaction_count=2)
        for index, (income, expense) in enumerate(zip(incomes, expenses))
    ]


def test_linear_regression_projects_next_point() -> None:
    estimate = linear_regression([Decimal('100'), Decimal('110'), Decimal('120')])

    assert estimate.slope == Decimal('10')
    assert estimate.intercept == Decimal('100')
    assert estimate.next_value == Decimal('130')


def test_linear_regression_single_point_is_flat() -> None:
    estimate = linear_regression([Decimal('42')])

    assert estimate.slope == Decimal('0')
    assert estimate.next_value == Decimal('42')


def test_calculate_trends_uses_both_series() -> None:
    trends = calculate_trends(_history(['1000', '1000', '1000'], ['100', '110', '120']))

    assert trends.predicted_expense == Decimal('130')
    assert trends.expense_trend_slope == Decimal('10')
    assert trends.predicted_income == Decimal('1000')
    assert trends.income_trend_slope == Decimal('0')
    assert trends.is_expense_anomaly is False
    assert trends.last_month is not None and trends.last_month.period == '2026-03'


def test_calculate_trends_clamps_negative_predictions() -> None:
    trends = calculate_trends(_history(['600', '300', '0'], ['300', '150', '0']))

    assert trends.expense_trend_slope < 0
    assert trends.predicted_expense == Decimal('0')
    assert trends.predicted_income == Decimal('0')


def test_calculate_trends_flags_expense_spike() -> None:
    trends = calculate_trends(_history(['1000', '1000', '1000'], ['100', '100', '400']))

    # average 200, last month 400 > 1.5 * 200
    assert trends.is_expense_anomaly is True


def test_growth_rate_substitutes_one_for_zero_start() -> None:
    assert growth_rate([Decimal('100'), Decimal('150')]) == Decimal('50')
    assert growth_rate([Decimal('0'), Decimal('50')]) == Decimal('4900')
    assert growth_rate([Decimal('10')]) == Decimal('0')


def test_trends_analysis_reports_growth_and_history() -> None:
    db = _session()
    user = User(email='trend@test.com', full_name='Trend')
    db.add(user)
    db.flush()
    for month, expense in [(4, '100.00'), (5, '110.00'), (6, '120.00')]:
        db.add_all(
            [
                Transaction(
                    user_id=user.id,
                    tx_type=TransactionType.expense,
                    amount=money(expense),
                    tx_date=date(2026, month, 10),
                    description='Groceries',
                ),
                Transaction(
                    user_id=user.id,
                    tx_type=TransactionType.income,
                    amount=money('1000.00'),
                    tx_date=date(2026, month, 1),
                    description='Salary',
                ),
            ]
        )
    db.flush()

    payload = calculate_trends_analysis(db, user.id, '3M', reference=date(2026, 7, 3))

    assert payload['period'] == '3M'
    assert [row['period'] for row in payload['history']] == ['2026-04', '2026-05', '2026-06']
    assert payload['predicted_expense'] == Decimal('130.00')
    assert payload['expense_growth'] == Decimal('20')
    assert payload['income_growth'] == Decimal('0')


def test_trends_analysis_rejects_unknown_period() -> None:
    db = _session()

    with pytest.raises(HTTPException) as exc:
        calculate_trends_analysis(db, 1, '2W')

    assert exc.value.status_code == 400
