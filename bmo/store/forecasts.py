"""Stored forecast points."""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Iterable, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from bmo import models
from bmo.errors import ValidationError
from bmo.tenancy import tenant_select

logger = logging.getLogger(__name__)

FORECAST_TYPES = ("sales", "revenue", "expense", "kpi")


async def create_forecasts(
    session: AsyncSession,
    company_id: str,
    forecasts: Iterable[Mapping[str, Any]],
) -> list[models.Forecast]:
    """Insert forecast points in one unit of work."""
    rows = []
    for point in forecasts:
        if point["forecast_type"] not in FORECAST_TYPES:
            raise ValidationError(f"Invalid forecast_type: {point['forecast_type']}")
        row = models.Forecast(
            company_id=company_id,
            forecast_type=point["forecast_type"],
            metric_name=point.get("metric_name"),
            forecast_date=point["forecast_date"],
            predicted_value=point["predicted_value"],
            confidence_interval_lower=point.get("confidence_interval_lower"),
            confidence_interval_upper=point.get("confidence_interval_upper"),
            model_version=point.get("model_version"),
            input_data=point.get("input_data"),
        )
        session.add(row)
        rows.append(row)

    await session.commit()
    logger.info(f"Stored {len(rows)} forecast point(s) for company {company_id}")
    return rows


async def list_forecasts(
    session: AsyncSession,
    company_id: str,
    *,
    forecast_type: str | None = None,
    start: date | None = None,
    end: date | None = None,
    limit: int | None = None,
) -> list[models.Forecast]:
    query = tenant_select(models.Forecast, company_id)
    if forecast_type:
        query = query.where(models.Forecast.forecast_type == forecast_type)
    if start:
        query = query.where(models.Forecast.forecast_date >= start)
    if end:
        query = query.where(models.Forecast.forecast_date <= end)

    query = query.order_by(models.Forecast.forecast_date.asc())
    if limit:
        query = query.limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())
