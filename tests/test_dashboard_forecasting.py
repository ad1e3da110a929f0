from datetime import date, timedelta

import numpy as np
import pytest

from bmo.errors import ValidationError
from bmo.pipelines.dashboard import compute_dashboard_stats, resolve_time_range
from bmo.pipelines.forecasting import (
    BASELINE_MODEL,
    HORIZON_DAYS,
    LINEAR_MODEL,
    baseline_forecast,
    generate_forecast,
    linear_forecast,
)
from bmo.store.forecasts import list_forecasts
from bmo.store.transactions import create_transaction

from conftest import post_entry

TODAY = date(2024, 8, 14)  # a Wednesday


@pytest.mark.parametrize(
    "option, start, label",
    [
        ("today", date(2024, 8, 14), "Today"),
        ("week", date(2024, 8, 12), "This Week"),
        ("month", date(2024, 8, 1), "This Month"),
        ("quarter", date(2024, 7, 1), "This Quarter"),
        ("year", date(2024, 1, 1), "This Year"),
        ("fortnight", date(2024, 8, 1), "This Month"),
    ],
)
def test_resolve_time_range(option, start, label):
    time_range = resolve_time_range(option, today=TODAY)
    assert (time_range.start, time_range.end, time_range.label) == (start, TODAY, label)


def test_custom_range():
    time_range = resolve_time_range("custom", custom_start=date(2024, 2, 3), custom_end=date(2024, 3, 9))
    assert time_range.label == "Feb 3 - Mar 9, 2024"

    with pytest.raises(ValidationError):
        resolve_time_range("custom", custom_start=date(2024, 2, 3))
    with pytest.raises(ValidationError):
        resolve_time_range("custom", custom_start=date(2024, 3, 9), custom_end=date(2024, 2, 3))


async def test_dashboard_stats(session, company, ledger):
    today = date.today()
    await post_entry(session, company.id, ledger["cash"], ledger["sales"], 400, txn_type="sales")
    await post_entry(session, company.id, ledger["cash"], ledger["sales"], 100, txn_type="income")
    await post_entry(session, company.id, ledger["rent"], ledger["cash"], 250, txn_type="expense")
    await create_transaction(
        session,
        company.id,
        transaction_date=today,
        transaction_type="expense",
        lines=[
            {"account_id": ledger["rent"].id, "debit_amount": 50},
            {"account_id": ledger["cash"].id, "credit_amount": 50},
        ],
    )
    await post_entry(session, company.id, ledger["cash"], ledger["sales"], 999, txn_type="sales", on=today - timedelta(days=400))

    stats = await compute_dashboard_stats(session, company.id, resolve_time_range("today"))

    assert stats.total_sales == 400
    assert stats.total_income == 100
    assert stats.total_expenses == 300
    assert stats.pending_reviews == 1
    assert stats.transaction_count == 4
    assert stats.to_dict()["label"] == "Today"


def test_baseline_forecast_shape():
    points = baseline_forecast("sales", TODAY, rng=np.random.default_rng(7))

    assert len(points) == HORIZON_DAYS
    assert points[0].forecast_date == TODAY + timedelta(days=1)
    assert points[-1].forecast_date == TODAY + timedelta(days=30)
    for i, point in enumerate(points, start=1):
        trend = 1000 + 10 * i
        assert trend <= point.predicted_value < trend + 100
        assert (point.confidence_interval_lower, point.confidence_interval_upper) == (trend - 200, trend + 200)
        assert point.model_version == BASELINE_MODEL


def test_linear_forecast_follows_trend():
    history = [(TODAY - timedelta(days=9 - i), 100.0 + 10 * i) for i in range(10)]

    points = linear_forecast("revenue", history, TODAY)

    assert points[0].predicted_value == pytest.approx(200.0)
    assert points[9].predicted_value == pytest.approx(290.0)
    assert points[0].confidence_interval_upper - points[0].predicted_value == pytest.approx(200.0)
    assert all(p.model_version == LINEAR_MODEL for p in points)


def test_linear_forecast_never_negative():
    history = [(TODAY - timedelta(days=2), 300.0), (TODAY - timedelta(days=1), 100.0)]

    points = linear_forecast("expense", history, TODAY)

    assert points[-1].predicted_value == 0.0


async def test_generate_forecast_stores_points(session, company, ledger):
    today = date.today()
    for days_ago, amount in ((3, 100), (2, 200), (1, 300)):
        await post_entry(
            session, company.id, ledger["cash"], ledger["sales"], amount, txn_type="sales", on=today - timedelta(days=days_ago)
        )

    points = await generate_forecast(session, company.id, "sales", metric_name="Daily sales")

    assert points[0].model_version == LINEAR_MODEL
    assert points[0].predicted_value == pytest.approx(500.0)
    stored = await list_forecasts(session, company.id, forecast_type="sales")
    assert len(stored) == HORIZON_DAYS
    assert stored[0].metric_name == "Daily sales"
    assert stored[0].input_data == {"history_days": 3, "historical_window": 90}


async def test_generate_forecast_without_history_uses_baseline(session, company):
    points = await generate_forecast(session, company.id, "kpi", store=False, rng=np.random.default_rng(1))

    assert points[0].model_version == BASELINE_MODEL
    assert await list_forecasts(session, company.id) == []


async def test_generate_forecast_rejects_unknown_type(session, company):
    with pytest.raises(ValidationError):
        await generate_forecast(session, company.id, "weather")
