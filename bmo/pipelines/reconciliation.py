"""Bank reconciliation.

Balance reconciliation compares a statement balance with the ledger.
Line matching scores statement lines against the day's transactions with
rapidfuzz and falls back to the chat model for lines with no confident
match.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Sequence

from rapidfuzz import fuzz
from sqlalchemy.ext.asyncio import AsyncSession

from azure_ai.chat import ChatClient, get_chat_client
from bmo import models
from bmo.config import ReconciliationSettings, settings
from bmo.store.reconciliations import save_reconciliation
from bmo.store.transactions import get_account_balance, list_transactions

logger = logging.getLogger(__name__)

BALANCE_TOLERANCE = 0.01
MATCH_SYSTEM_PROMPT = "You are a financial matching assistant. Match bank statement lines to transactions."


@dataclass
class StatementLine:
    """One line of a bank statement."""
    date: date
    amount: float
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date.isoformat(), "amount": self.amount, "description": self.description}


@dataclass
class MatchSuggestion:
    statement_line: StatementLine
    suggested_transaction: str | None = None
    method: str | None = None  # fuzzy, ai
    score: float | None = None
    details: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["statement_line"] = self.statement_line.to_dict()
        return data


@dataclass
class ReconcileResult:
    matched: int
    unmatched: int
    suggestions: list[MatchSuggestion]

    def to_dict(self) -> dict[str, Any]:
        return {
            "matched": self.matched,
            "unmatched": self.unmatched,
            "suggestions": [s.to_dict() for s in self.suggestions],
        }


async def create_reconciliation(
    session: AsyncSession,
    company_id: str,
    account_id: str,
    reconciliation_date: date,
    statement_balance: float,
    reconciled_by: str | None,
) -> models.Reconciliation:
    """Compare a statement balance with the ledger balance as of a date.

    Transactions dated on the reconciliation day are recorded as matched.
    A difference above one cent is recorded as an unmatched item and marks
    the reconciliation as a discrepancy.
    """
    ledger_balance = await get_account_balance(session, company_id, account_id, as_of=reconciliation_date)
    transactions = await list_transactions(
        session, company_id, start=reconciliation_date, end=reconciliation_date, limit=1000
    )

    difference = round(statement_balance - ledger_balance, 2)
    unmatched_items: list[dict[str, Any]] = []
    if abs(difference) > BALANCE_TOLERANCE:
        unmatched_items.append({
            "type": "difference",
            "amount": difference,
            "description": "Balance difference between statement and ledger",
        })
    status = "completed" if abs(difference) < BALANCE_TOLERANCE else "discrepancy"

    reconciliation = await save_reconciliation(
        session,
        company_id,
        account_id=account_id,
        reconciliation_date=reconciliation_date,
        statement_balance=statement_balance,
        ledger_balance=ledger_balance,
        matched_transactions=[t.id for t in transactions],
        unmatched_items=unmatched_items,
        status=status,
        reconciled_by=reconciled_by,
    )
    logger.info(
        f"Reconciliation {reconciliation.id} for account {account_id}: {status} (difference {difference})",
        extra={"company_id": company_id},
    )
    return reconciliation


def score_match(
    line: StatementLine,
    txn: models.Transaction,
    config: ReconciliationSettings | None = None,
) -> tuple[float, dict[str, str]]:
    """Score a statement line against a ledger transaction (0-90).

    Amount is worth up to 40 points, date up to 30 and description
    similarity up to 20.
    """
    config = config or settings.reconciliation
    score = 0.0
    details: dict[str, str] = {}

    # Amount
    line_amount = abs(float(line.amount))
    txn_amount = abs(float(txn.amount))
    diff = abs(line_amount - txn_amount)
    if diff <= config.amount_tolerance:
        score += 40
        details["amount"] = "EXACT"
    elif diff <= 1.0:
        score += 35
        details["amount"] = "CLOSE"
    elif diff / max(line_amount, 1.0) <= 0.01:
        score += 30
        details["amount"] = "WITHIN_1%"
    else:
        details["amount"] = "MISMATCH"

    # Date
    days = abs((line.date - txn.transaction_date).days)
    if days == 0:
        score += 30
        details["date"] = "EXACT"
    elif days <= 1:
        score += 25
        details["date"] = "1_DAY"
    elif days <= config.date_tolerance_days:
        score += 20
        details["date"] = f"{days}_DAYS"
    elif days <= 7:
        score += 10
        details["date"] = "WITHIN_WEEK"
    else:
        details["date"] = "MISMATCH"

    # Description
    similarity = fuzz.token_set_ratio(
        (line.description or "").lower(),
        (txn.description or txn.transaction_type or "").lower(),
    )
    if similarity >= 90:
        score += 20
        details["description"] = "HIGH_MATCH"
    elif similarity >= 70:
        score += 15
        details["description"] = "MEDIUM_MATCH"
    elif similarity >= 50:
        score += 10
        details["description"] = "LOW_MATCH"
    else:
        details["description"] = "NO_MATCH"

    return score, details


def best_match(
    line: StatementLine,
    transactions: Sequence[models.Transaction],
    config: ReconciliationSettings | None = None,
) -> tuple[models.Transaction | None, float, dict[str, str]]:
    """Highest-scoring transaction at or above the fuzzy threshold, if any."""
    config = config or settings.reconciliation
    best: models.Transaction | None = None
    best_score = 0.0
    best_details: dict[str, str] = {}
    for txn in transactions:
        score, details = score_match(line, txn, config)
        if score >= config.fuzzy_threshold and score > best_score:
            best, best_score, best_details = txn, score, details
    return best, best_score, best_details


def build_match_prompt(line: StatementLine, transactions: Sequence[models.Transaction]) -> str:
    listing = "\n".join(
        f"- {t.id} {t.transaction_date.isoformat()}: {t.description or t.transaction_type} - {float(t.amount):.2f}"
        for t in transactions
    )
    return f"""Match this bank statement line to a transaction:

Statement Line:
Date: {line.date.isoformat()}
Amount: {line.amount}
Description: {line.description}

Available Transactions:
{listing}

Return only the transaction ID if there's a match, or "NO_MATCH" if no match found."""


async def ai_reconcile(
    session: AsyncSession,
    company_id: str,
    account_id: str,
    statement_lines: Sequence[StatementLine],
    reconciliation_date: date,
    *,
    chat: ChatClient | None = None,
    config: ReconciliationSettings | None = None,
) -> ReconcileResult:
    """Match statement lines to the day's ledger transactions.

    Lines beyond ``max_ai_lines`` are ignored. A transaction is matched to
    at most one line. Lines whose model call fails are logged and left out
    of the result.
    """
    config = config or settings.reconciliation
    chat = chat or get_chat_client()
    transactions = await list_transactions(
        session, company_id, start=reconciliation_date, end=reconciliation_date, limit=1000
    )

    used: set[str] = set()
    suggestions: list[MatchSuggestion] = []
    for line in list(statement_lines)[: config.max_ai_lines]:
        available = [t for t in transactions if t.id not in used]

        txn, score, details = best_match(line, available, config)
        if txn is not None:
            used.add(txn.id)
            suggestions.append(
                MatchSuggestion(line, suggested_transaction=txn.id, method="fuzzy", score=score, details=details)
            )
            continue

        if not available:
            suggestions.append(MatchSuggestion(line))
            continue

        try:
            response = await chat.complete(
                [
                    {"role": "system", "content": MATCH_SYSTEM_PROMPT},
                    {"role": "user", "content": build_match_prompt(line, available)},
                ],
                temperature=0.1,
                max_tokens=50,
            )
        except Exception as e:
            logger.error(f"Failed to get AI match for line {line.to_dict()}: {e}", extra={"company_id": company_id})
            continue

        matched = next((t for t in available if t.id in response), None)
        if matched is not None:
            used.add(matched.id)
            suggestions.append(MatchSuggestion(line, suggested_transaction=matched.id, method="ai"))
        else:
            suggestions.append(MatchSuggestion(line))

    matched_count = sum(1 for s in suggestions if s.suggested_transaction)
    logger.info(
        f"Reconciled account {account_id}: {matched_count} of {len(suggestions)} line(s) matched",
        extra={"company_id": company_id},
    )
    return ReconcileResult(matched=matched_count, unmatched=len(suggestions) - matched_count, suggestions=suggestions)
