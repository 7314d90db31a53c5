from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from ledgersight.db.base import Base
from ledgersight.models.enums import TransactionType
from ledgersight.models.transaction import Transaction
from ledgersight.models.user import User
from ledgersight.services.history import (
    build_monthly_history,
    get_monthly_history,
    populated_months,
    shift_month,
)
from ledgersight.utils.decimal_math import money


def _session() -> Session:
    engine = create_engine('sqlite+pysqlite:///:memory:', future=True)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)()


def _tx(user_id: int, tx_type: TransactionType, amount: str, tx_date: date) -> Transaction:
    return Transaction(user_id=user_id, tx_type=tx_type, amount=money(amount), tx_date=tx_date, description='t')


def test_history_without_transactions_is_full_and_zeroed() -> None:
    db = _session()
    user = User(email='empty@test.com', full_name='Empty')
    db.add(user)
    db.flush()

    history = get_monthly_history(db, user.id, 6, reference=date(2026, 7, 15))

    assert [row.period for row in history] == ['2026-01', '2026-02', '2026-03', '2026-04', '2026-05', '2026-06']
    assert all(row.income == Decimal('0') and row.expense == Decimal('0') for row in history)
    assert all(row.transaction_count == 0 for row in history)
    assert populated_months(history) == 0


def test_history_sums_income_and_expense_and_counts_transfers() -> None:
    db = _session()
    user = User(email='ledger@test.com', full_name='Ledger')
    db.add(user)
    db.flush()
    db.add_all(
        [
            _tx(user.id, TransactionType.income, '3000.00', date(2026, 5, 1)),
            _tx(user.id, TransactionType.expense, '1200.00', date(2026, 5, 3)),
            _tx(user.id, TransactionType.expense, '300.50', date(2026, 5, 20)),
            _tx(user.id, TransactionType.transfer, '999.00', date(2026, 5, 21)),
            _tx(user.id, TransactionType.expense, '50.00', date(2026, 6, 30)),
            # reference month is not part of the window
            _tx(user.id, TransactionType.expense, '10000.00', date(2026, 7, 2)),
        ]
    )
    db.flush()

    history = get_monthly_history(db, user.id, 3, reference=date(2026, 7, 15))

    by_period = {row.period: row for row in history}
    assert list(by_period) == ['2026-04', '2026-05', '2026-06']
    may = by_period['2026-05']
    assert may.income == Decimal('3000.00')
    assert may.expense == Decimal('1500.50')
    assert may.transaction_count == 4
    assert may.balance == Decimal('1499.50')
    assert by_period['2026-06'].expense == Decimal('50.00')
    assert by_period['2026-04'].transaction_count == 0
    assert populated_months(history) == 2


def test_history_is_scoped_to_user() -> None:
    db = _session()
    owner = User(email='owner@test.com', full_name='Owner')
    other = User(email='other@test.com', full_name='Other')
    db.add_all([owner, other])
    db.flush()
    db.add(_tx(other.id, TransactionType.income, '500.00', date(2026, 6, 1)))
    db.flush()

    history = get_monthly_history(db, owner.id, 2, reference=date(2026, 7, 1))

    assert populated_months(history) == 0


def test_build_monthly_history_crosses_year_boundary() -> None:
    entries = [
        _tx(1, TransactionType.expense, '80.00', date(2025, 11, 30)),
        _tx(1, TransactionType.income, '900.00', date(2026, 1, 5)),
        _tx(1, TransactionType.expense, '40.00', date(2025, 10, 31)),
    ]

    history = build_monthly_history(entries, months=3, reference=date(2026, 2, 10))

    assert [row.period for row in history] == ['2025-11', '2025-12', '2026-01']
    assert history[0].expense == Decimal('80.00')
    assert history[1].transaction_count == 0
    assert history[2].income == Decimal('900.00')


def test_shift_month_wraps_years() -> None:
    assert shift_month(2026, 1, -1) == (2025, 12)
    assert shift_month(2026, 12, 1) == (2027, 1)
    assert shift_month(2026, 3, -14) == (2025, 1)
