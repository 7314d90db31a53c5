from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledgersight.models.enums import TransactionType
from ledgersight.models.transaction import Transaction
from ledgersight.utils.decimal_math import as_decimal


@dataclass(frozen=True)
class ExpenseAggregate:
    avg: Decimal | None
    count: int


def list_transactions(
    db: Session,
    user_id: int,
    *,
    start: date,
    end: date,
    tx_type: TransactionType | None = None,
) -> list[Transaction]:
    query = select(Transaction).where(
        Transaction.user_id == user_id,
        Transaction.tx_date >= start,
        Transaction.tx_date <= end,
    )
    if tx_type is not None:
        query = query.where(Transaction.tx_type == tx_type)
    return list(db.scalars(query.order_by(Transaction.tx_date.asc(), Transaction.id.asc())).all())


def list_transactions_on(db: Session, user_id: int, day: date) -> list[Transaction]:
    return list_transactions(db, user_id, start=day, end=day)


def expense_amounts(db: Session, user_id: int, *, since: date, until: date) -> list[Decimal]:
    rows = db.scalars(
        select(Transaction.amount).where(
            Transaction.user_id == user_id,
            Transaction.tx_type == TransactionType.expense,
            Transaction.tx_date >= since,
            Transaction.tx_date <= until,
        )
    ).all()
    return [as_decimal(value) for value in rows]


def expense_aggregate(db: Session, user_id: int, *, since: date, until: date) -> ExpenseAggregate:
    row = db.execute(
        select(func.avg(Transaction.amount), func.count(Transaction.id)).where(
            Transaction.user_id == user_id,
            Transaction.tx_type == TransactionType.expense,
            Transaction.tx_date >= since,
            Transaction.tx_date <= until,
        )
    ).one()
    avg, count = row
    return ExpenseAggregate(avg=as_decimal(avg) if avg is not None else None, count=int(count or 0))
