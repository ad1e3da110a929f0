"""Dashboard figures over a time range."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from bmo.errors import ValidationError
from bmo.store.transactions import list_transactions

logger = logging.getLogger(__name__)

SALES_TYPES = ("sales", "invoice")
INCOME_TYPES = ("revenue", "income")
EXPENSE_TYPES = ("expense",)


@dataclass
class TimeRange:
    start: date
    end: date
    label: str


@dataclass
class DashboardStats:
    total_sales: float
    total_income: float
    total_expenses: float
    pending_reviews: int
    transaction_count: int
    start: date
    end: date
    label: str

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["start"] = self.start.isoformat()
        data["end"] = self.end.isoformat()
        return data


def resolve_time_range(
    option: str = "month",
    *,
    today: date | None = None,
    custom_start: date | None = None,
    custom_end: date | None = None,
) -> TimeRange:
    """Turn a range name into dates ending today.

    Weeks start on Monday. Unknown names fall back to the current month.
    """
    today = today or date.today()
    if option == "today":
        return TimeRange(today, today, "Today")
    if option == "week":
        return TimeRange(today - timedelta(days=today.weekday()), today, "This Week")
    if option == "quarter":
        first_month = 3 * ((today.month - 1) // 3) + 1
        return TimeRange(today.replace(month=first_month, day=1), today, "This Quarter")
    if option == "year":
        return TimeRange(today.replace(month=1, day=1), today, "This Year")
    if option == "custom":
        if not (custom_start and custom_end):
            raise ValidationError("Custom range requires start and end dates")
        if custom_start > custom_end:
            raise ValidationError("Start date must not be after end date")
        label = f"{custom_start.strftime('%b')} {custom_start.day} - {custom_end.strftime('%b')} {custom_end.day}, {custom_end.year}"
        return TimeRange(custom_start, custom_end, label)
    return TimeRange(today.replace(day=1), today, "This Month")


async def compute_dashboard_stats(session: AsyncSession, company_id: str, time_range: TimeRange) -> DashboardStats:
    transactions = await list_transactions(
        session, company_id, start=time_range.start, end=time_range.end, limit=1000
    )

    total_sales = total_income = total_expenses = 0.0
    pending = 0
    for txn in transactions:
        amount = float(txn.amount or 0)
        if txn.transaction_type in SALES_TYPES:
            total_sales += amount
        if txn.transaction_type in INCOME_TYPES:
            total_income += amount
        if txn.transaction_type in EXPENSE_TYPES:
            total_expenses += amount
        if txn.status == "pending":
            pending += 1

    logger.debug(f"Dashboard stats for company {company_id} ({time_range.label}): {len(transactions)} transactions")
    return DashboardStats(
        total_sales=round(total_sales, 2),
        total_income=round(total_income, 2),
        total_expenses=round(total_expenses, 2),
        pending_reviews=pending,
        transaction_count=len(transactions),
        start=time_range.start,
        end=time_range.end,
        label=time_range.label,
    )
