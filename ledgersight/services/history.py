from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy.orm import Session

from ledgersight.models.enums import TransactionType
from ledgersight.models.transaction import Transaction
from ledgersight.services.ledger import list_transactions
from ledgersight.utils.decimal_math import money


@dataclass
class MonthlyBucket:
    period: str
    income: Decimal
    expense: Decimal
    transaction_count: int = 0

    @property
    def balance(self) -> Decimal:
        return money(self.income - self.expense)

    def as_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "income": money(self.income),
            "expense": money(self.expense),
            "balance": self.balance,
            "transaction_count": self.transaction_count,
        }


def shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def window_start(reference: date, months: int) -> date:
    year, month = shift_month(reference.year, reference.month, -months)
    return date(year, month, 1)


def empty_buckets(reference: date, months: int) -> list[MonthlyBucket]:
    start = window_start(reference, months)
    rows: list[MonthlyBucket] = []
    for offset in range(months):
        year, month = shift_month(start.year, start.month, offset)
        rows.append(MonthlyBucket(period=f"{year:04d}-{month:02d}", income=money(0), expense=money(0)))
    return rows


def build_monthly_history(
    transactions: Iterable[Transaction],
    *,
    months: int,
    reference: date,
) -> list[MonthlyBucket]:
    """Fold transactions into ``months`` zero-seeded buckets ending the month before ``reference``.

    Only income and expense move the totals; every other type is still
    counted in ``transaction_count``. Entries outside the window are ignored.
    """
    buckets = empty_buckets(reference, months)
    by_key = {row.period: row for row in buckets}
    for entry in transactions:
        bucket = by_key.get(month_key(entry.tx_date))
        if bucket is None:
            continue
        amount = money(entry.amount)
        if entry.tx_type == TransactionType.income:
            bucket.income = money(bucket.income + amount)
        elif entry.tx_type == TransactionType.expense:
            bucket.expense = money(bucket.expense + amount)
        bucket.transaction_count += 1
    return buckets


def get_monthly_history(
    db: Session,
    user_id: int,
    months: int,
    *,
    reference: date | None = None,
) -> list[MonthlyBucket]:
    if months < 1:
        return []
    reference = reference or date.today()
    transactions = list_transactions(db, user_id, start=window_start(reference, months), end=reference)
    return build_monthly_history(transactions, months=months, reference=reference)


def populated_months(history: list[MonthlyBucket]) -> int:
    return sum(1 for row in history if row.transaction_count > 0)
