from datetime import date

import pytest

from bmo.errors import NotFoundError
from bmo.pipelines.reporting import (
    generate_sofp,
    generate_sopl,
    sofp_rows,
    sopl_rows,
    summarize_report,
)

from conftest import post_entry


class FakeChat:
    def __init__(self, reply="Solid liquidity."):
        self.reply = reply
        self.messages = None

    async def complete(self, messages, **kwargs):
        self.messages = messages
        return self.reply


@pytest.fixture
async def books(session, company, ledger):
    """Owner invests 10k, sells 2.5k, pays 1k rent and owes 400 to a supplier."""
    await post_entry(session, company.id, ledger["cash"], ledger["equity"], 10_000, on=date(2024, 1, 2))
    await post_entry(session, company.id, ledger["cash"], ledger["sales"], 2_500, on=date(2024, 1, 15))
    await post_entry(session, company.id, ledger["rent"], ledger["cash"], 1_000, on=date(2024, 1, 31))
    await post_entry(session, company.id, ledger["rent"], ledger["payables"], 400, on=date(2024, 2, 5))
    return ledger


async def test_sofp_sections_and_totals(session, company, books):
    report = await generate_sofp(session, company.id, as_of=date(2024, 1, 31))

    assert [(i.account_code, i.amount) for i in report.assets] == [("1000", 11_500)]
    assert [(i.account_code, i.amount) for i in report.liabilities] == [("2000", 0)]
    assert report.total_equity == 10_000
    # Profit is not closed to equity, so the statement is out by the period's net income
    assert report.discrepancy == 1_500
    assert report.to_dict()["is_balanced"] is False


async def test_sopl_only_lists_accounts_with_movement(session, company, books):
    report = await generate_sopl(session, company.id, date(2024, 1, 1), date(2024, 1, 31))

    assert [(i.account_name, i.amount) for i in report.revenue] == [("Sales Revenue", 2_500)]
    assert [(i.account_name, i.amount) for i in report.expenses] == [("Rent Expense", 1_000)]
    assert report.net_income == 1_500

    february = await generate_sopl(session, company.id, date(2024, 2, 1), date(2024, 2, 29))
    assert february.revenue == []
    assert february.net_income == -400


async def test_unknown_company(session):
    with pytest.raises(NotFoundError):
        await generate_sofp(session, "missing", as_of=date(2024, 1, 31))


async def test_export_rows(session, company, books):
    sofp = await generate_sofp(session, company.id, as_of=date(2024, 1, 31))
    rows = sofp_rows(sofp)

    assert rows[0] == ["Statement of Financial Position - Acme Ltd"]
    assert rows[1] == ["As of 1/31/2024"]
    assert ["1000", "Cash", "$11,500.00"] in rows
    assert ["", "Total Assets", "$11,500.00"] in rows
    assert rows[-1] == ["Balance Check", "DISCREPANCY: 1500.00"]

    sopl = await generate_sopl(session, company.id, date(2024, 1, 1), date(2024, 1, 31))
    rows = sopl_rows(sopl)
    assert rows[1] == ["Period: 1/1/2024 to 1/31/2024"]
    assert rows[-1] == ["NET INCOME", "", "$1,500.00"]


async def test_summarize_report_prompts_with_figures(session, company, books):
    sopl = await generate_sopl(session, company.id, date(2024, 1, 1), date(2024, 1, 31))
    chat = FakeChat()

    summary = await summarize_report(sopl, chat=chat)

    assert summary == "Solid liquidity."
    prompt = chat.messages[-1]["content"]
    assert "Acme Ltd" in prompt
    assert "4000: Sales Revenue - 2,500.00" in prompt
