import enum


class TransactionType(str, enum.Enum):
    income = "INCOME"
    expense = "EXPENSE"
    transfer = "TRANSFER"


class SubscriptionPlan(str, enum.Enum):
    free = "FREE"
    pro = "PRO"
    family = "FAMILY"


class BudgetPeriod(str, enum.Enum):
    weekly = "WEEKLY"
    monthly = "MONTHLY"
    yearly = "YEARLY"


class AiFeature(str, enum.Enum):
    categorization = "CATEGORIZATION"
    recommendations = "RECOMMENDATIONS"
    predictive_analytics = "PREDICTIVE_ANALYTICS"
    anomaly_detection = "ANOMALY_DETECTION"


class AiProvider(str, enum.Enum):
    openai = "OPENAI"
    gemini = "GEMINI"


class AnomalyType(str, enum.Enum):
    high_value = "HIGH_VALUE"


class AnomalySeverity(str, enum.Enum):
    low = "LOW"
    medium = "MEDIUM"
    high = "HIGH"
    critical = "CRITICAL"


SEVERITY_RANK = {
    AnomalySeverity.low: 1,
    AnomalySeverity.medium: 2,
    AnomalySeverity.high: 3,
    AnomalySeverity.critical: 4,
}
