"""Rule-based anomaly detection over recent posted transactions.

Three single-pass rules: amount z-score, per-type frequency and large
round-number amounts.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Sequence

import numpy as np
from sqlalchemy.ext.asyncio import AsyncSession

from bmo.config import AnomalySettings, settings
from bmo.store.transactions import list_transactions

logger = logging.getLogger(__name__)

SEVERITY_ORDER = {"high": 3, "medium": 2, "low": 1}


@dataclass
class Anomaly:
    transaction_id: str
    anomaly_type: str  # amount, frequency, pattern
    severity: str  # low, medium, high
    description: str
    confidence: float
    detected_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["detected_at"] = self.detected_at.isoformat()
        return data


def _format_amount(amount: float) -> str:
    amount = float(amount)
    return str(int(amount)) if amount.is_integer() else str(amount)


def detect_anomalies(transactions: Sequence[Any], config: AnomalySettings | None = None) -> list[Anomaly]:
    """Apply the anomaly rules to a list of transactions.

    Args:
        transactions: Objects with ``id``, ``amount`` and ``transaction_type``
        config: Thresholds (defaults to ``settings.anomaly``)

    Returns:
        Anomalies ordered high severity first
    """
    config = config or settings.anomaly
    if not transactions:
        return []

    anomalies: list[Anomaly] = []
    amounts = np.array([float(t.amount) for t in transactions], dtype=float)
    mean = float(amounts.mean())
    std = float(amounts.std())  # population

    # Amount z-score
    if std > 0:
        for txn, amount in zip(transactions, amounts):
            z = abs(amount - mean) / std
            if z > config.zscore_threshold:
                anomalies.append(
                    Anomaly(
                        transaction_id=txn.id,
                        anomaly_type="amount",
                        severity="high" if z > 5 else "medium" if z > 4 else "low",
                        description=(
                            f"Transaction amount ({_format_amount(amount)}) is {z:.2f} "
                            f"standard deviations from the mean"
                        ),
                        confidence=min(0.95, z / 10),
                    )
                )

    # Frequency by type
    counts = Counter(t.transaction_type for t in transactions)
    avg = len(transactions) / len(counts)
    for txn_type, count in counts.items():
        if count > avg * config.frequency_multiplier:
            sample = next(t for t in transactions if t.transaction_type == txn_type)
            anomalies.append(
                Anomaly(
                    transaction_id=sample.id,
                    anomaly_type="frequency",
                    severity="high" if count > avg * config.frequency_high_multiplier else "medium",
                    description=f'Unusual frequency: {count} transactions of type "{txn_type}" (expected ~{avg:.0f})',
                    confidence=0.7,
                )
            )

    # Large round numbers
    base = config.round_number_base
    for txn, amount in zip(transactions, amounts):
        if amount >= base and amount % base == 0:
            anomalies.append(
                Anomaly(
                    transaction_id=txn.id,
                    anomaly_type="pattern",
                    severity="low",
                    description=f"Large round number transaction: {_format_amount(amount)}",
                    confidence=0.5,
                )
            )

    anomalies.sort(key=lambda a: SEVERITY_ORDER[a.severity], reverse=True)
    return anomalies


async def detect_company_anomalies(
    session: AsyncSession,
    company_id: str,
    lookback_days: int | None = None,
) -> list[Anomaly]:
    """Run the rules over a company's posted transactions in the lookback window."""
    lookback_days = lookback_days or settings.anomaly.lookback_days
    start = date.today() - timedelta(days=lookback_days)
    transactions = await list_transactions(session, company_id, start=start, status="posted", limit=10_000)

    anomalies = detect_anomalies(transactions)
    logger.info(
        f"Detected {len(anomalies)} anomalies in {len(transactions)} transactions for company {company_id}",
        extra={"company_id": company_id},
    )
    return anomalies
