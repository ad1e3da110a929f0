"""Financial statements: balance sheet (SOFP) and income statement (SOPL).

Both reports are built from posted transaction lines, flattened into
export rows, and can be summarised by the chat model.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from azure_ai.chat import ChatClient, get_chat_client
from bmo import models
from bmo.errors import NotFoundError
from bmo.exports import format_currency, format_us_date
from bmo.store.accounts import list_accounts
from bmo.store.companies import get_company
from bmo.store.transactions import natural_balance, posted_line_totals

logger = logging.getLogger(__name__)

SUMMARY_TEMPERATURE = 0.7
SUMMARY_MAX_TOKENS = 1000
ITEM_HEADERS = ["Account Code", "Account Name", "Amount"]


@dataclass
class LineItem:
    account_code: str
    account_name: str
    amount: float
    level: int


@dataclass
class SOFPReport:
    """Statement of financial position as of a date."""
    company: models.Company
    as_of_date: date
    assets: list[LineItem] = field(default_factory=list)
    liabilities: list[LineItem] = field(default_factory=list)
    equity: list[LineItem] = field(default_factory=list)

    @property
    def total_assets(self) -> float:
        return round(sum(i.amount for i in self.assets), 2)

    @property
    def total_liabilities(self) -> float:
        return round(sum(i.amount for i in self.liabilities), 2)

    @property
    def total_equity(self) -> float:
        return round(sum(i.amount for i in self.equity), 2)

    @property
    def discrepancy(self) -> float:
        return round(self.total_assets - (self.total_liabilities + self.total_equity), 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "company_id": self.company.id,
            "company_name": self.company.name,
            "currency": self.company.currency_code,
            "as_of_date": self.as_of_date.isoformat(),
            "assets": [asdict(i) for i in self.assets],
            "liabilities": [asdict(i) for i in self.liabilities],
            "equity": [asdict(i) for i in self.equity],
            "total_assets": self.total_assets,
            "total_liabilities": self.total_liabilities,
            "total_equity": self.total_equity,
            "is_balanced": abs(self.discrepancy) < 0.01,
        }


@dataclass
class SOPLReport:
    """Statement of profit or loss for a period."""
    company: models.Company
    period_start: date
    period_end: date
    revenue: list[LineItem] = field(default_factory=list)
    expenses: list[LineItem] = field(default_factory=list)

    @property
    def total_revenue(self) -> float:
        return round(sum(i.amount for i in self.revenue), 2)

    @property
    def total_expenses(self) -> float:
        return round(sum(i.amount for i in self.expenses), 2)

    @property
    def net_income(self) -> float:
        return round(self.total_revenue - self.total_expenses, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "company_id": self.company.id,
            "company_name": self.company.name,
            "currency": self.company.currency_code,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "revenue": [asdict(i) for i in self.revenue],
            "expenses": [asdict(i) for i in self.expenses],
            "total_revenue": self.total_revenue,
            "total_expenses": self.total_expenses,
            "net_income": self.net_income,
        }


async def _require_company(session: AsyncSession, company_id: str) -> models.Company:
    company = await get_company(session, company_id)
    if company is None:
        raise NotFoundError("Company not found")
    return company


async def generate_sofp(session: AsyncSession, company_id: str, as_of: date | None = None) -> SOFPReport:
    """Balance sheet from posted lines up to ``as_of`` (default today)."""
    company = await _require_company(session, company_id)
    as_of = as_of or date.today()

    accounts = await list_accounts(session, company_id)
    totals = await posted_line_totals(session, company_id, end=as_of)

    report = SOFPReport(company=company, as_of_date=as_of)
    sections = {"asset": report.assets, "liability": report.liabilities, "equity": report.equity}
    for account in accounts:
        section = sections.get(account.account_type)
        if section is None:
            continue
        debit, credit = totals.get(account.id, (0.0, 0.0))
        section.append(
            LineItem(
                account_code=account.account_code,
                account_name=account.account_name,
                amount=natural_balance(account.balance_type, debit, credit),
                level=1 if account.parent_account_id else 0,
            )
        )

    for section in sections.values():
        section.sort(key=lambda item: item.account_code)

    logger.info(f"Generated SOFP for company {company_id} as of {as_of}")
    return report


async def generate_sopl(session: AsyncSession, company_id: str, start: date, end: date) -> SOPLReport:
    """Income statement from posted lines between ``start`` and ``end``.

    Revenue accounts report credit minus debit, expense accounts debit
    minus credit. Accounts with no movement are left out.
    """
    company = await _require_company(session, company_id)
    accounts = await list_accounts(session, company_id)
    totals = await posted_line_totals(session, company_id, start=start, end=end)

    report = SOPLReport(company=company, period_start=start, period_end=end)
    for account in accounts:
        if account.account_type not in ("revenue", "expense"):
            continue
        debit, credit = totals.get(account.id, (0.0, 0.0))
        amount = round(credit - debit, 2) if account.account_type == "revenue" else round(debit - credit, 2)
        if amount == 0:
            continue

        item = LineItem(
            account_code=account.account_code,
            account_name=account.account_name,
            amount=amount,
            level=1 if account.parent_account_id else 0,
        )
        (report.revenue if account.account_type == "revenue" else report.expenses).append(item)

    report.revenue.sort(key=lambda item: item.account_code)
    report.expenses.sort(key=lambda item: item.account_code)

    logger.info(f"Generated SOPL for company {company_id} from {start} to {end}")
    return report


def _section_rows(title: str, items: list[LineItem], total_label: str, total: float, currency: str) -> list[list[str]]:
    rows: list[list[str]] = [[title], list(ITEM_HEADERS)]
    for item in items:
        rows.append([item.account_code, item.account_name, format_currency(item.amount, currency)])
    rows.append(["", total_label, format_currency(total, currency)])
    rows.append([])
    return rows


def sofp_rows(report: SOFPReport) -> list[list[str]]:
    """Flatten a balance sheet into export rows ending with a balance check."""
    currency = report.company.currency_code or "USD"
    rows: list[list[str]] = [
        [f"Statement of Financial Position - {report.company.name}"],
        [f"As of {format_us_date(report.as_of_date)}"],
        [],
    ]
    rows += _section_rows("ASSETS", report.assets, "Total Assets", report.total_assets, currency)
    rows += _section_rows("LIABILITIES", report.liabilities, "Total Liabilities", report.total_liabilities, currency)
    rows += _section_rows("EQUITY", report.equity, "Total Equity", report.total_equity, currency)

    diff = report.discrepancy
    rows.append(["Balance Check", "BALANCED" if diff == 0 else f"DISCREPANCY: {diff:.2f}"])
    return rows


def sopl_rows(report: SOPLReport) -> list[list[str]]:
    """Flatten an income statement into export rows ending with net income."""
    currency = report.company.currency_code or "USD"
    rows: list[list[str]] = [
        [f"Statement of Profit or Loss - {report.company.name}"],
        [f"Period: {format_us_date(report.period_start)} to {format_us_date(report.period_end)}"],
        [],
    ]
    rows += _section_rows("REVENUE", report.revenue, "Total Revenue", report.total_revenue, currency)
    rows += _section_rows("EXPENSES", report.expenses, "Total Expenses", report.total_expenses, currency)
    rows.append(["NET INCOME", "", format_currency(report.net_income, currency)])
    return rows


def _listing(items: list[LineItem]) -> str:
    return "\n".join(f"{i.account_code}: {i.account_name} - {i.amount:,.2f}" for i in items)


def sofp_prompt(report: SOFPReport) -> str:
    return f"""You are a financial analyst. Analyze the following Statement of Financial Position and provide:
1. Key insights about the company's financial position
2. Notable changes or trends
3. Areas of concern or strength
4. Recommendations for management

Company: {report.company.name}
Date: {report.as_of_date.isoformat()}

ASSETS:
{_listing(report.assets)}
Total Assets: {report.total_assets:,.2f}

LIABILITIES:
{_listing(report.liabilities)}
Total Liabilities: {report.total_liabilities:,.2f}

EQUITY:
{_listing(report.equity)}
Total Equity: {report.total_equity:,.2f}

Provide a concise, professional analysis."""


def sopl_prompt(report: SOPLReport) -> str:
    return f"""You are a financial analyst. Analyze the following Statement of Profit or Loss and provide:
1. Key insights about the company's profitability
2. Revenue trends and major revenue sources
3. Expense analysis and cost structure
4. Profitability recommendations

Company: {report.company.name}
Period: {report.period_start.isoformat()} to {report.period_end.isoformat()}

REVENUE:
{_listing(report.revenue)}
Total Revenue: {report.total_revenue:,.2f}

EXPENSES:
{_listing(report.expenses)}
Total Expenses: {report.total_expenses:,.2f}

NET INCOME: {report.net_income:,.2f}

Provide a concise, professional analysis with actionable insights."""


async def summarize_report(report: Any, *, chat: ChatClient | None = None) -> str:
    """Ask the chat model for an analyst summary of a SOFP or SOPL report."""
    chat = chat or get_chat_client()
    if isinstance(report, SOFPReport):
        system = "You are an expert financial analyst providing insights on accounting reports."
        prompt = sofp_prompt(report)
    else:
        system = "You are an expert financial analyst providing insights on profit and loss statements."
        prompt = sopl_prompt(report)

    return await chat.complete(
        [{"role": "system", "content": system}, {"role": "user", "content": prompt}],
        temperature=SUMMARY_TEMPERATURE,
        max_tokens=SUMMARY_MAX_TOKENS,
    )
