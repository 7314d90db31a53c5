from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Integer, Numeric, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from ledgersight.db.base import Base
from ledgersight.models.enums import AnomalySeverity, AnomalyType


class Anomaly(Base):
    __tablename__ = "anomalies"
    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_anomalies_transaction"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    anomaly_type: Mapped[AnomalyType] = mapped_column(
        Enum(AnomalyType, name="anomaly_type"),
        default=AnomalyType.high_value,
        nullable=False,
    )
    severity: Mapped[AnomalySeverity] = mapped_column(
        Enum(AnomalySeverity, name="anomaly_severity"),
        nullable=False,
    )
    score: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    expected_value: Mapped[Decimal] = mapped_column(Numeric(24, 2), nullable=False)
    actual_value: Mapped[Decimal] = mapped_column(Numeric(24, 2), nullable=False)
    deviation_pct: Mapped[Decimal] = mapped_column(Numeric(24, 4), nullable=False)
    historical_average: Mapped[Decimal] = mapped_column(Numeric(24, 2), nullable=False)
    historical_std_dev: Mapped[Decimal] = mapped_column(Numeric(24, 2), nullable=False)
    ai_analysis: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    dismissed: Mapped[bool] = mapped_column(default=False, nullable=False)
    dismissed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
