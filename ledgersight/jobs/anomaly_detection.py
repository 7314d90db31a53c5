from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
import logging
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledgersight.models.ai import UserAiConfig
from ledgersight.models.anomaly import Anomaly
from ledgersight.services.anomalies import detect_daily_anomalies


logger = logging.getLogger("ledgersight.jobs.anomalies")

Detector = Callable[..., list[Anomaly]]


@dataclass
class BatchResult:
    users: int = 0
    anomalies: int = 0
    failed_user_ids: list[int] = field(default_factory=list)


def ai_enabled_user_ids(db: Session) -> list[int]:
    return list(
        db.scalars(
            select(UserAiConfig.user_id)
            .where(UserAiConfig.is_ai_enabled.is_(True))
            .order_by(UserAiConfig.user_id.asc())
        ).all()
    )


def run_for_user(
    session_factory: Callable[[], Session],
    user_id: int,
    *,
    day: date | None = None,
    detect: Detector = detect_daily_anomalies,
) -> list[Anomaly]:
    with session_factory() as db:
        try:
            anomalies = detect(db, user_id, day=day)
            db.commit()
        except Exception:
            db.rollback()
            raise
    return anomalies


def run_daily_anomaly_detection(
    session_factory: Callable[[], Session] | None = None,
    *,
    day: date | None = None,
    detect: Detector = detect_daily_anomalies,
) -> BatchResult:
    """Detect the day's anomalies for every AI-enabled user, one user at a time.

    A failure for one user is logged and recorded; the batch carries on.
    """
    if session_factory is None:
        from ledgersight.db.session import SessionLocal

        session_factory = SessionLocal

    logger.info("Starting daily anomaly detection...")
    with session_factory() as db:
        user_ids = ai_enabled_user_ids(db)
    logger.info("Processing %s users for anomaly detection...", len(user_ids))

    result = BatchResult(users=len(user_ids))
    for user_id in user_ids:
        try:
            anomalies = run_for_user(session_factory, user_id, day=day, detect=detect)
        except Exception:
            logger.exception("Error processing user %s.", user_id)
            result.failed_user_ids.append(user_id)
            continue
        if anomalies:
            result.anomalies += len(anomalies)
            logger.info("User %s: detected %s anomalies.", user_id, len(anomalies))

    logger.info(
        "Finished anomaly detection. Total found: %s, failed users: %s",
        result.anomalies,
        len(result.failed_user_ids),
    )
    return result
