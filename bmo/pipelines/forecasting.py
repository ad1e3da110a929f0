"""30-day forecasts from posted transaction history.

With at least two days of history a linear trend is fitted to daily totals;
otherwise a baseline series is produced.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

import numpy as np
from sqlalchemy.ext.asyncio import AsyncSession

from bmo import models
from bmo.errors import ValidationError
from bmo.store.forecasts import FORECAST_TYPES, create_forecasts
from bmo.store.transactions import list_posted_between

logger = logging.getLogger(__name__)

HORIZON_DAYS = 30
MIN_INTERVAL = 200.0
LINEAR_MODEL = "linear-trend-1.0"
BASELINE_MODEL = "baseline-1.0"

# Transaction types counted toward each forecast type; None means all types.
TYPE_FILTERS: dict[str, tuple[str, ...] | None] = {
    "sales": ("sales", "invoice"),
    "revenue": ("revenue", "income"),
    "expense": ("expense",),
    "kpi": None,
}


@dataclass
class ForecastPoint:
    forecast_type: str
    forecast_date: date
    predicted_value: float
    confidence_interval_lower: float
    confidence_interval_upper: float
    model_version: str
    metric_name: str | None = None

    def to_record(self, input_data: dict[str, Any] | None = None) -> dict[str, Any]:
        return {
            "forecast_type": self.forecast_type,
            "metric_name": self.metric_name,
            "forecast_date": self.forecast_date,
            "predicted_value": self.predicted_value,
            "confidence_interval_lower": self.confidence_interval_lower,
            "confidence_interval_upper": self.confidence_interval_upper,
            "model_version": self.model_version,
            "input_data": input_data,
        }


def daily_totals(transactions: list[models.Transaction]) -> list[tuple[date, float]]:
    totals: dict[date, float] = defaultdict(float)
    for txn in transactions:
        totals[txn.transaction_date] += float(txn.amount)
    return sorted(totals.items())


def baseline_forecast(
    forecast_type: str,
    start: date,
    horizon: int = HORIZON_DAYS,
    rng: np.random.Generator | None = None,
) -> list[ForecastPoint]:
    """``1000 + 10*i`` plus uniform noise in [0, 100), bounded by +/-200."""
    rng = rng or np.random.default_rng()
    points = []
    for i in range(1, horizon + 1):
        trend = 1000 + 10 * i
        points.append(
            ForecastPoint(
                forecast_type=forecast_type,
                forecast_date=start + timedelta(days=i),
                predicted_value=round(trend + float(rng.uniform(0, 100)), 2),
                confidence_interval_lower=float(trend - MIN_INTERVAL),
                confidence_interval_upper=float(trend + MIN_INTERVAL),
                model_version=BASELINE_MODEL,
            )
        )
    return points


def linear_forecast(
    forecast_type: str,
    history: list[tuple[date, float]],
    start: date,
    horizon: int = HORIZON_DAYS,
) -> list[ForecastPoint]:
    """Fit ``value = a*day + b`` to daily totals and extend it ``horizon`` days past ``start``.

    The interval is two residual standard deviations, at least 200.
    """
    origin = history[0][0]
    x = np.array([(d - origin).days for d, _ in history], dtype=float)
    y = np.array([v for _, v in history], dtype=float)
    slope, intercept = np.polyfit(x, y, 1)

    residuals = y - (slope * x + intercept)
    half_width = max(2 * float(residuals.std()), MIN_INTERVAL)

    points = []
    for i in range(1, horizon + 1):
        day = start + timedelta(days=i)
        value = max(0.0, float(slope * (day - origin).days + intercept))
        points.append(
            ForecastPoint(
                forecast_type=forecast_type,
                forecast_date=day,
                predicted_value=round(value, 2),
                confidence_interval_lower=round(value - half_width, 2),
                confidence_interval_upper=round(value + half_width, 2),
                model_version=LINEAR_MODEL,
            )
        )
    return points


async def generate_forecast(
    session: AsyncSession,
    company_id: str,
    forecast_type: str,
    *,
    metric_name: str | None = None,
    historical_days: int = 90,
    store: bool = True,
    rng: np.random.Generator | None = None,
) -> list[ForecastPoint]:
    """Forecast the next 30 days for one forecast type and optionally store it."""
    if forecast_type not in FORECAST_TYPES:
        raise ValidationError(f"Invalid forecast_type: {forecast_type}")

    today = date.today()
    transactions = await list_posted_between(
        session,
        company_id,
        start=today - timedelta(days=historical_days),
        end=today,
        transaction_types=TYPE_FILTERS[forecast_type],
    )
    history = daily_totals(transactions)

    if len(history) >= 2:
        points = linear_forecast(forecast_type, history, today)
    else:
        points = baseline_forecast(forecast_type, today, rng=rng)
    for point in points:
        point.metric_name = metric_name

    logger.info(
        f"Forecast {forecast_type} for company {company_id}: {points[0].model_version} "
        f"from {len(history)} day(s) of history",
        extra={"company_id": company_id},
    )

    if store:
        input_data = {"history_days": len(history), "historical_window": historical_days}
        await create_forecasts(session, company_id, [p.to_record(input_data) for p in points])
    return points
