"""Dashboard, anomaly and forecast endpoints."""
from __future__ import annotations

from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from bmo.auth import require_company
from bmo.db import get_session
from bmo.pipelines.anomaly import detect_company_anomalies
from bmo.pipelines.dashboard import compute_dashboard_stats, resolve_time_range
from bmo.pipelines.forecasting import generate_forecast
from bmo.store.forecasts import list_forecasts

router = APIRouter(tags=["Analytics"])


class ForecastRequest(BaseModel):
    forecast_type: Literal["sales", "revenue", "expense", "kpi"]
    metric_name: str | None = None
    historical_days: int = Field(default=90, ge=1, le=3650)


@router.get("/dashboard")
async def dashboard(
    time_range: str = Query(default="month", alias="range"),
    start: date | None = None,
    end: date | None = None,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    """Sales, income, expenses and pending reviews over a named range."""
    resolved = resolve_time_range(time_range, custom_start=start, custom_end=end)
    stats = await compute_dashboard_stats(session, company_id, resolved)
    return stats.to_dict()


@router.get("/anomalies")
async def anomalies(
    lookback_days: int | None = Query(default=None, ge=1, le=3650),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    found = await detect_company_anomalies(session, company_id, lookback_days)
    return {"count": len(found), "anomalies": [a.to_dict() for a in found]}


@router.post("/forecasts")
async def create_forecast(
    payload: ForecastRequest,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    """Forecast the next 30 days and store the points."""
    points = await generate_forecast(
        session,
        company_id,
        payload.forecast_type,
        metric_name=payload.metric_name,
        historical_days=payload.historical_days,
    )
    return [
        {**p.to_record(), "forecast_date": p.forecast_date.isoformat()}
        for p in points
    ]


@router.get("/forecasts")
async def get_forecasts(
    forecast_type: str | None = None,
    start: date | None = None,
    end: date | None = None,
    limit: int | None = Query(default=None, ge=1, le=1000),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    rows = await list_forecasts(session, company_id, forecast_type=forecast_type, start=start, end=end, limit=limit)
    return [f.to_dict() for f in rows]
