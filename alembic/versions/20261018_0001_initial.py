"""Initial schema for Ledgersight analytics.

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 09:30:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    subscription_plan = sa.Enum("free", "pro", "family", name="subscription_plan")
    transaction_type = sa.Enum("income", "expense", "transfer", name="transaction_type")
    budget_period = sa.Enum("weekly", "monthly", "yearly", name="budget_period")
    anomaly_type = sa.Enum("high_value", name="anomaly_type")
    anomaly_severity = sa.Enum("low", "medium", "high", "critical", name="anomaly_severity")
    ai_feature = sa.Enum(
        "categorization", "recommendations", "predictive_analytics", "anomaly_detection", name="ai_feature"
    )

    for enum_type in (subscription_plan, transaction_type, budget_period, anomaly_type, anomaly_severity, ai_feature):
        enum_type.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("plan", subscription_plan, nullable=False, server_default="free"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tx_type", transaction_type, nullable=False),
        sa.Column("amount", sa.Numeric(24, 2), nullable=False),
        sa.Column("tx_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("category", sa.String(length=100), nullable=False, server_default="general"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_transactions_id", "transactions", ["id"])
    op.create_index("ix_transactions_user_id", "transactions", ["user_id"])
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "tx_date"])

    op.create_table(
        "goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("target_amount", sa.Numeric(24, 2), nullable=False),
        sa.Column("current_amount", sa.Numeric(24, 2), nullable=False, server_default="0"),
        sa.Column("target_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_goals_id", "goals", ["id"])
    op.create_index("ix_goals_user_id", "goals", ["user_id"])

    op.create_table(
        "goal_contributions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("goal_id", sa.Integer(), sa.ForeignKey("goals.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Numeric(24, 2), nullable=False),
        sa.Column("contributed_on", sa.Date(), nullable=False),
    )
    op.create_index("ix_goal_contributions_id", "goal_contributions", ["id"])
    op.create_index("ix_goal_contributions_goal_id", "goal_contributions", ["goal_id"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Numeric(24, 2), nullable=False),
        sa.Column("period", budget_period, nullable=False, server_default="monthly"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_index("ix_budgets_id", "budgets", ["id"])
    op.create_index("ix_budgets_user_id", "budgets", ["user_id"])

    op.create_table(
        "predictions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("prediction_type", sa.String(length=50), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("predicted_income", sa.Numeric(24, 2), nullable=False),
        sa.Column("predicted_expenses", sa.Numeric(24, 2), nullable=False),
        sa.Column("predicted_balance", sa.Numeric(24, 2), nullable=False),
        sa.Column("confidence", sa.Numeric(5, 4), nullable=False),
        sa.Column("algorithm", sa.String(length=120), nullable=False),
        sa.Column("narrative_payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_predictions_id", "predictions", ["id"])
    op.create_index("ix_predictions_user_id", "predictions", ["user_id"])

    op.create_table(
        "anomalies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("anomaly_type", anomaly_type, nullable=False, server_default="high_value"),
        sa.Column("severity", anomaly_severity, nullable=False),
        sa.Column("score", sa.Numeric(6, 4), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("expected_value", sa.Numeric(24, 2), nullable=False),
        sa.Column("actual_value", sa.Numeric(24, 2), nullable=False),
        sa.Column("deviation_pct", sa.Numeric(24, 4), nullable=False),
        sa.Column("historical_average", sa.Numeric(24, 2), nullable=False),
        sa.Column("historical_std_dev", sa.Numeric(24, 2), nullable=False),
        sa.Column("ai_analysis", sa.JSON(), nullable=True),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("dismissed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("dismissed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("transaction_id", name="uq_anomalies_transaction"),
    )
    op.create_index("ix_anomalies_id", "anomalies", ["id"])
    op.create_index("ix_anomalies_user_id", "anomalies", ["user_id"])

    op.create_table(
        "user_ai_configs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("is_ai_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("uses_corporate_key", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("analytics_model", sa.String(length=100), nullable=True),
        sa.Column("categorization_model", sa.String(length=100), nullable=True),
        sa.Column("recommendation_model", sa.String(length=100), nullable=True),
        sa.Column("gemini_api_key", sa.Text(), nullable=True),
        sa.Column("openai_api_key", sa.Text(), nullable=True),
        sa.Column("monthly_token_limit", sa.Integer(), nullable=True),
    )
    op.create_index("ix_user_ai_configs_id", "user_ai_configs", ["id"])
    op.create_index("ix_user_ai_configs_user_id", "user_ai_configs", ["user_id"], unique=True)

    op.create_table(
        "ai_usage_metrics",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("feature", ai_feature, nullable=False),
        sa.Column("model", sa.String(length=100), nullable=False),
        sa.Column("prompt_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completion_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("estimated_cost", sa.Numeric(14, 8), nullable=False, server_default="0"),
        sa.Column("related_entity_id", sa.String(length=100), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("error_message", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_ai_usage_metrics_id", "ai_usage_metrics", ["id"])
    op.create_index("ix_ai_usage_metrics_user_id", "ai_usage_metrics", ["user_id"])
    op.create_index("ix_ai_usage_metrics_created_at", "ai_usage_metrics", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_ai_usage_metrics_created_at", table_name="ai_usage_metrics")
    op.drop_index("ix_ai_usage_metrics_user_id", table_name="ai_usage_metrics")
    op.drop_index("ix_ai_usage_metrics_id", table_name="ai_usage_metrics")
    op.drop_table("ai_usage_metrics")
    op.drop_index("ix_user_ai_configs_user_id", table_name="user_ai_configs")
    op.drop_index("ix_user_ai_configs_id", table_name="user_ai_configs")
    op.drop_table("user_ai_configs")
    op.drop_index("ix_anomalies_user_id", table_name="anomalies")
    op.drop_index("ix_anomalies_id", table_name="anomalies")
    op.drop_table("anomalies")
    op.drop_index("ix_predictions_user_id", table_name="predictions")
    op.drop_index("ix_predictions_id", table_name="predictions")
    op.drop_table("predictions")
    op.drop_index("ix_budgets_user_id", table_name="budgets")
    op.drop_index("ix_budgets_id", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_goal_contributions_goal_id", table_name="goal_contributions")
    op.drop_index("ix_goal_contributions_id", table_name="goal_contributions")
    op.drop_table("goal_contributions")
    op.drop_index("ix_goals_user_id", table_name="goals")
    op.drop_index("ix_goals_id", table_name="goals")
    op.drop_table("goals")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_index("ix_transactions_user_id", table_name="transactions")
    op.drop_index("ix_transactions_id", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_id", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for name in (
        "ai_feature",
        "anomaly_severity",
        "anomaly_type",
        "budget_period",
        "transaction_type",
        "subscription_plan",
    ):
        sa.Enum(name=name).drop(bind, checkfirst=True)
