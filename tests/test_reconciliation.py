from datetime import date
from types import SimpleNamespace

from bmo.pipelines.reconciliation import (
    StatementLine,
    ai_reconcile,
    best_match,
    create_reconciliation,
    score_match,
)
from bmo.store.reconciliations import list_reconciliations

from conftest import post_entry

DAY = date(2024, 4, 30)


def ledger_txn(id, amount, description, on=DAY, transaction_type="expense"):
    return SimpleNamespace(
        id=id, amount=amount, description=description, transaction_date=on, transaction_type=transaction_type
    )


class FakeChat:
    def __init__(self, replies):
        self.replies = list(replies)
        self.prompts = []

    async def complete(self, messages, **kwargs):
        self.prompts.append(messages[-1]["content"])
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def test_score_exact_match():
    line = StatementLine(DAY, -120.0, "CONTOSO SUPPLIES")

    score, details = score_match(line, ledger_txn("t1", 120.0, "Contoso supplies"))

    assert score == 90
    assert details == {"amount": "EXACT", "date": "EXACT", "description": "HIGH_MATCH"}


def test_score_degrades_with_distance():
    line = StatementLine(DAY, 120.5, "Fabrikam")

    score, details = score_match(line, ledger_txn("t1", 120.0, "Office chairs", on=date(2024, 4, 28)))

    assert details["amount"] == "CLOSE"
    assert details["date"] == "2_DAYS"
    assert details["description"] == "NO_MATCH"
    assert score == 55


def test_best_match_respects_threshold():
    line = StatementLine(DAY, 75.0, "Coffee")
    candidates = [
        ledger_txn("far", 75.0, "Coffee", on=date(2024, 3, 1)),
        ledger_txn("near", 75.0, "Coffee beans"),
    ]

    txn, score, _ = best_match(line, candidates)
    assert txn.id == "near"
    assert score >= 80

    none, _, _ = best_match(StatementLine(DAY, 9999.0, "Unknown"), candidates)
    assert none is None


async def test_balance_reconciliation_completed(session, company, ledger, admin_user):
    await post_entry(session, company.id, ledger["cash"], ledger["equity"], 1000, on=date(2024, 4, 1))
    txn = await post_entry(session, company.id, ledger["rent"], ledger["cash"], 250, on=DAY)

    reconciliation = await create_reconciliation(session, company.id, ledger["cash"].id, DAY, 750.0, admin_user.id)

    assert reconciliation.status == "completed"
    assert reconciliation.ledger_balance == 750
    assert reconciliation.difference == 0
    assert reconciliation.unmatched_items == []
    assert reconciliation.matched_transactions == [txn.id]
    assert reconciliation.completed_at is not None


async def test_balance_reconciliation_discrepancy(session, company, ledger):
    await post_entry(session, company.id, ledger["cash"], ledger["equity"], 1000, on=date(2024, 4, 1))

    reconciliation = await create_reconciliation(session, company.id, ledger["cash"].id, DAY, 980.0, None)

    assert reconciliation.status == "discrepancy"
    assert reconciliation.difference == -20
    assert reconciliation.unmatched_items[0]["type"] == "difference"
    assert reconciliation.completed_at is None
    assert await list_reconciliations(session, company.id, account_id=ledger["cash"].id) == [reconciliation]


async def test_ai_reconcile_prefers_fuzzy_then_asks_model(session, company, ledger):
    rent = await post_entry(session, company.id, ledger["rent"], ledger["cash"], 1500, on=DAY, description="April rent")
    fees = await post_entry(session, company.id, ledger["rent"], ledger["cash"], 35, on=DAY, description="Bank fees")
    chat = FakeChat([f"The match is {fees.id}"])

    result = await ai_reconcile(
        session,
        company.id,
        ledger["cash"].id,
        [
            StatementLine(DAY, -1500.0, "APRIL RENT"),
            StatementLine(date(2024, 4, 20), -12.0, "SVC CHG"),
        ],
        DAY,
        chat=chat,
    )

    assert result.matched == 2
    assert result.unmatched == 0
    first, second = result.suggestions
    assert (first.suggested_transaction, first.method) == (rent.id, "fuzzy")
    assert (second.suggested_transaction, second.method) == (fees.id, "ai")
    # The fuzzy match is no longer offered to the model
    assert rent.id not in chat.prompts[0]


async def test_ai_reconcile_skips_lines_when_model_fails(session, company, ledger):
    await post_entry(session, company.id, ledger["rent"], ledger["cash"], 35, on=DAY, description="Bank fees")
    chat = FakeChat([RuntimeError("timeout"), "NO_MATCH"])

    result = await ai_reconcile(
        session,
        company.id,
        ledger["cash"].id,
        [StatementLine(DAY, -999.0, "Mystery"), StatementLine(DAY, -888.0, "Another")],
        DAY,
        chat=chat,
    )

    assert len(result.suggestions) == 1
    assert result.suggestions[0].statement_line.description == "Another"
    assert result.suggestions[0].suggested_transaction is None
    assert result.to_dict()["unmatched"] == 1
