from ledgersight.models.ai import AiUsageMetric, UserAiConfig
from ledgersight.models.anomaly import Anomaly
from ledgersight.models.budget import Budget
from ledgersight.models.enums import (
    AiFeature,
    AiProvider,
    AnomalySeverity,
    AnomalyType,
    BudgetPeriod,
    SubscriptionPlan,
    TransactionType,
)
from ledgersight.models.goal import Goal, GoalContribution
from ledgersight.models.prediction import Prediction
from ledgersight.models.transaction import Transaction
from ledgersight.models.user import User

__all__ = [
    "AiUsageMetric",
    "UserAiConfig",
    "Anomaly",
    "Budget",
    "AiFeature",
    "AiProvider",
    "AnomalySeverity",
    "AnomalyType",
    "BudgetPeriod",
    "SubscriptionPlan",
    "TransactionType",
    "Goal",
    "GoalContribution",
    "Prediction",
    "Transaction",
    "User",
]
