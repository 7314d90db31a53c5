from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
import logging
from typing import Any

from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledgersight.models.anomaly import Anomaly
from ledgersight.models.enums import SEVERITY_RANK, AiFeature, AnomalySeverity, AnomalyType
from ledgersight.models.transaction import Transaction
from ledgersight.schemas.narrative import AnomalyRiskAnalysis
from ledgersight.services.ai_keys import CredentialResolver, get_api_key
from ledgersight.services.ai_usage import track_failure, track_usage
from ledgersight.services.ledger import expense_aggregate, expense_amounts, list_transactions_on
from ledgersight.services.narrative import CompletionFn, complete, extract_json_object, initialize_client
from ledgersight.utils.decimal_math import as_decimal, money


logger = logging.getLogger("ledgersight.anomalies")

BASELINE_DAYS = 90
MIN_BASELINE_POINTS = 10
Z_SCORE_THRESHOLD = Decimal("3")
CRITICAL_Z_SCORE = Decimal("5")
MAX_SCORE = Decimal("0.99")
SCORE_QUANT = Decimal("0.0001")
# largest value a Numeric(24, 4) column holds
MAX_DEVIATION_PCT = Decimal("99999999999999999999.9999")
LIST_LIMIT = 50
AI_ANALYSIS_FAILED: dict[str, Any] = {"error": "Failed to analyze"}

ANOMALY_PROMPT = """
Analyse this transaction, flagged as anomalous (z-score {z_score:.2f}):
Transaction: {amount:.2f} ({tx_type})
Date: {tx_date}
Historical mean: {mean:.2f} (std dev: {std_dev:.2f})

Is it fraud, an input error, or a legitimate one-off expense?
Answer in JSON: {{"analysis": "...", "riskLevel": "LOW/MEDIUM/HIGH", "action": "..."}}
""".strip()


@dataclass(frozen=True)
class BaselineStats:
    mean: Decimal
    std_dev: Decimal
    count: int


@dataclass(frozen=True)
class AnomalyScore:
    z_score: Decimal
    severity: AnomalySeverity
    score: Decimal


def compute_baseline(
    db: Session,
    user_id: int,
    *,
    until: date,
    days: int = BASELINE_DAYS,
) -> BaselineStats | None:
    """Mean and population standard deviation of expenses in the trailing window.

    Returns None when there are fewer than ten expenses or every amount is equal.
    """
    since = until - timedelta(days=days)
    aggregate = expense_aggregate(db, user_id, since=since, until=until)
    if aggregate.avg is None or aggregate.count < MIN_BASELINE_POINTS:
        return None

    avg = aggregate.avg
    amounts = expense_amounts(db, user_id, since=since, until=until)
    variance = sum(((amount - avg) ** 2 for amount in amounts), Decimal("0")) / Decimal(len(amounts))
    std_dev = variance.sqrt() if variance > 0 else Decimal("0")
    if std_dev == 0:
        return None
    return BaselineStats(mean=avg, std_dev=std_dev, count=aggregate.count)


def score_transaction(amount: Decimal, baseline: BaselineStats) -> AnomalyScore | None:
    z_score = abs(as_decimal(amount) - baseline.mean) / baseline.std_dev
    if z_score <= Z_SCORE_THRESHOLD:
        return None
    severity = AnomalySeverity.critical if z_score > CRITICAL_Z_SCORE else AnomalySeverity.high
    score = min(MAX_SCORE, z_score / Decimal("10")).quantize(SCORE_QUANT)
    return AnomalyScore(z_score=z_score, severity=severity, score=score)


def analyze_anomaly_with_ai(
    db: Session,
    user_id: int,
    transaction: Transaction,
    baseline: BaselineStats,
    z_score: Decimal,
    *,
    resolve_credentials: CredentialResolver = get_api_key,
    completion: CompletionFn = complete,
) -> dict[str, Any]:
    # set only while the provider call is outstanding
    pending_model: str | None = None
    try:
        credentials = resolve_credentials(db, user_id, AiFeature.anomaly_detection)
        client = initialize_client(credentials)
        prompt = ANOMALY_PROMPT.format(
            z_score=z_score,
            amount=money(transaction.amount),
            tx_type=transaction.tx_type.value,
            tx_date=transaction.tx_date.isoformat(),
            mean=money(baseline.mean),
            std_dev=money(baseline.std_dev),
        )
        pending_model = credentials.model
        response = completion(client, [{"role": "user", "content": prompt}])
        pending_model = None
        track_usage(
            db,
            user_id,
            AiFeature.anomaly_detection,
            response.usage,
            credentials.model,
            related_id=transaction.id,
        )
        payload = extract_json_object(response.content)
        if payload is None:
            return dict(AI_ANALYSIS_FAILED)
        return AnomalyRiskAnalysis.model_validate(payload).model_dump(by_alias=True)
    except (HTTPException, ValidationError) as exc:
        logger.warning("Risk classification skipped for transaction %s: %s", transaction.id, exc)
        if pending_model is not None:
            detail = exc.detail if isinstance(exc, HTTPException) else str(exc)
            track_failure(db, user_id, AiFeature.anomaly_detection, pending_model, str(detail))
        return dict(AI_ANALYSIS_FAILED)
    except Exception as exc:
        logger.exception("Risk classification failed for transaction %s.", transaction.id)
        if pending_model is not None:
            track_failure(db, user_id, AiFeature.anomaly_detection, pending_model, str(exc) or type(exc).__name__)
        return dict(AI_ANALYSIS_FAILED)


def _deviation_pct(amount: Decimal, mean: Decimal) -> Decimal:
    deviation = (amount - mean) / mean * Decimal("100")
    # a mean of a few cents can push this past any fixed width
    return max(-MAX_DEVIATION_PCT, min(MAX_DEVIATION_PCT, deviation)).quantize(SCORE_QUANT)


def _already_flagged(db: Session, transaction_id: int) -> bool:
    return db.scalar(select(Anomaly.id).where(Anomaly.transaction_id == transaction_id)) is not None


def detect_daily_anomalies(
    db: Session,
    user_id: int,
    *,
    day: date | None = None,
    baseline_days: int = BASELINE_DAYS,
    resolve_credentials: CredentialResolver = get_api_key,
    completion: CompletionFn = complete,
) -> list[Anomaly]:
    day = day or date.today()
    transactions = list_transactions_on(db, user_id, day)
    if not transactions:
        return []

    baseline = compute_baseline(db, user_id, until=day, days=baseline_days)
    if baseline is None:
        logger.info("User %s has no expense baseline; skipping detection.", user_id)
        return []

    created: list[Anomaly] = []
    for transaction in transactions:
        if _already_flagged(db, transaction.id):
            continue
        amount = money(transaction.amount)
        scored = score_transaction(amount, baseline)
        if scored is None:
            continue

        analysis = analyze_anomaly_with_ai(
            db,
            user_id,
            transaction,
            baseline,
            scored.z_score,
            resolve_credentials=resolve_credentials,
            completion=completion,
        )
        anomaly = Anomaly(
            user_id=user_id,
            transaction_id=transaction.id,
            anomaly_type=AnomalyType.high_value,
            severity=scored.severity,
            score=scored.score,
            description=f"Amount {amount:,.2f} is highly atypical (z-score {scored.z_score:.1f}).",
            expected_value=money(baseline.mean),
            actual_value=amount,
            deviation_pct=_deviation_pct(amount, baseline.mean),
            historical_average=money(baseline.mean),
            historical_std_dev=money(baseline.std_dev),
            ai_analysis=analysis,
            detected_at=datetime.now(timezone.utc),
        )
        try:
            with db.begin_nested():
                db.add(anomaly)
        except IntegrityError:
            # a concurrent run flagged it between the check and the insert
            logger.info("Transaction %s already flagged by another run.", transaction.id)
            continue
        created.append(anomaly)
    return created


def list_anomalies(
    db: Session,
    user_id: int,
    *,
    min_severity: AnomalySeverity | None = None,
    min_score: Decimal | None = None,
    include_dismissed: bool = False,
    limit: int = LIST_LIMIT,
) -> list[Anomaly]:
    query = select(Anomaly).where(Anomaly.user_id == user_id)
    if min_severity is not None:
        allowed = [row for row, rank in SEVERITY_RANK.items() if rank >= SEVERITY_RANK[min_severity]]
        query = query.where(Anomaly.severity.in_(allowed))
    if min_score is not None:
        query = query.where(Anomaly.score >= min_score)
    if not include_dismissed:
        query = query.where(Anomaly.dismissed.is_(False))
    query = query.order_by(Anomaly.detected_at.desc(), Anomaly.id.desc()).limit(max(1, min(limit, 500)))
    return list(db.scalars(query).all())


def dismiss_anomaly(db: Session, user_id: int, anomaly_id: int, *, now: datetime | None = None) -> Anomaly:
    anomaly = db.scalar(select(Anomaly).where(Anomaly.id == anomaly_id, Anomaly.user_id == user_id))
    if anomaly is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Anomaly not found.")
    if anomaly.dismissed:
        return anomaly
    anomaly.dismissed = True
    anomaly.dismissed_at = now or datetime.now(timezone.utc)
    db.flush()
    return anomaly
