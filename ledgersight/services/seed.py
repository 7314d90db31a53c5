from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledgersight.models.ai import UserAiConfig
from ledgersight.models.budget import Budget
from ledgersight.models.enums import BudgetPeriod, SubscriptionPlan, TransactionType
from ledgersight.models.goal import Goal, GoalContribution
from ledgersight.models.transaction import Transaction
from ledgersight.models.user import User
from ledgersight.services.history import shift_month
from ledgersight.utils.decimal_math import money

DEMO_HISTORY_MONTHS = 6
DEMO_EMAIL = "demo@ledgersight.app"

# (category, description, base amount, day of month)
MONTHLY_EXPENSES = [
    ("housing", "Rent", Decimal("1200.00"), 1),
    ("groceries", "Supermarket", Decimal("320.00"), 6),
    ("utilities", "Power and water", Decimal("140.00"), 12),
    ("transport", "Fuel", Decimal("95.00"), 18),
    ("leisure", "Dinner out", Decimal("80.00"), 24),
]


def _get_or_create_user(db: Session, *, email: str, full_name: str, plan: SubscriptionPlan) -> User:
    user = db.scalar(select(User).where(User.email == email))
    if user is not None:
        return user

    user = User(email=email, full_name=full_name, plan=plan, is_active=True)
    db.add(user)
    db.flush()
    return user


def _ensure_ai_config(db: Session, *, user_id: int) -> UserAiConfig:
    config = db.scalar(select(UserAiConfig).where(UserAiConfig.user_id == user_id))
    if config is not None:
        return config

    config = UserAiConfig(user_id=user_id, is_ai_enabled=True, uses_corporate_key=True)
    db.add(config)
    db.flush()
    return config


def _ensure_transaction(
    db: Session,
    *,
    user_id: int,
    tx_type: TransactionType,
    amount: Decimal,
    tx_date: date,
    category: str,
    description: str,
) -> None:
    existing = db.scalar(
        select(Transaction.id).where(
            Transaction.user_id == user_id,
            Transaction.tx_date == tx_date,
            Transaction.description == description,
        )
    )
    if existing is not None:
        return

    db.add(
        Transaction(
            user_id=user_id,
            tx_type=tx_type,
            amount=money(amount),
            tx_date=tx_date,
            category=category,
            description=description,
        )
    )


def _seed_month(db: Session, *, user_id: int, year: int, month: int, index: int) -> None:
    _ensure_transaction(
        db,
        user_id=user_id,
        tx_type=TransactionType.income,
        amount=Decimal("4200.00") + Decimal(index * 50),
        tx_date=date(year, month, 1),
        category="salary",
        description="Salary",
    )
    for category, description, base, day in MONTHLY_EXPENSES:
        # mild upward drift so the trend line has a slope
        amount = base + base * Decimal(index) / Decimal("50")
        _ensure_transaction(
            db,
            user_id=user_id,
            tx_type=TransactionType.expense,
            amount=amount,
            tx_date=date(year, month, day),
            category=category,
            description=description,
        )
    _ensure_transaction(
        db,
        user_id=user_id,
        tx_type=TransactionType.transfer,
        amount=Decimal("500.00"),
        tx_date=date(year, month, 2),
        category="savings",
        description="Transfer to savings",
    )


def _ensure_goal(db: Session, *, user_id: int, today: date) -> Goal:
    goal = db.scalar(select(Goal).where(Goal.user_id == user_id, Goal.name == "Emergency fund"))
    if goal is not None:
        return goal

    goal = Goal(
        user_id=user_id,
        name="Emergency fund",
        target_amount=money(10000),
        current_amount=money(3000),
        target_date=today + timedelta(days=365),
    )
    db.add(goal)
    db.flush()
    for weeks_ago in range(1, 9):
        db.add(
            GoalContribution(
                goal_id=goal.id,
                amount=money(250),
                contributed_on=today - timedelta(weeks=weeks_ago),
            )
        )
    return goal


def _ensure_budget(db: Session, *, user_id: int, name: str, amount: Decimal) -> None:
    existing = db.scalar(select(Budget.id).where(Budget.user_id == user_id, Budget.name == name))
    if existing is not None:
        return
    db.add(Budget(user_id=user_id, name=name, amount=money(amount), period=BudgetPeriod.monthly, is_active=True))


def seed_demo_data(db: Session, *, today: date | None = None) -> None:
    today = today or date.today()
    user = _get_or_create_user(db, email=DEMO_EMAIL, full_name="Demo User", plan=SubscriptionPlan.pro)
    _ensure_ai_config(db, user_id=user.id)

    for index in range(DEMO_HISTORY_MONTHS):
        year, month = shift_month(today.year, today.month, index - DEMO_HISTORY_MONTHS)
        _seed_month(db, user_id=user.id, year=year, month=month, index=index)

    _ensure_goal(db, user_id=user.id, today=today)
    _ensure_budget(db, user_id=user.id, name="Groceries", amount=Decimal("400"))
    _ensure_budget(db, user_id=user.id, name="Leisure", amount=Decimal("150"))

    db.flush()
    db.commit()
