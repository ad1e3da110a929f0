"""Persisted bank reconciliations."""
from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from bmo import models
from bmo.tenancy import tenant_select


async def save_reconciliation(
    session: AsyncSession,
    company_id: str,
    *,
    account_id: str,
    reconciliation_date: date,
    statement_balance: float,
    ledger_balance: float,
    matched_transactions: list[str],
    unmatched_items: list[dict[str, Any]],
    status: str,
    reconciled_by: str | None,
) -> models.Reconciliation:
    reconciliation = models.Reconciliation(
        company_id=company_id,
        account_id=account_id,
        reconciliation_date=reconciliation_date,
        statement_balance=statement_balance,
        ledger_balance=ledger_balance,
        difference=round(statement_balance - ledger_balance, 2),
        matched_transactions=matched_transactions,
        unmatched_items=unmatched_items,
        status=status,
        reconciled_by=reconciled_by,
        completed_at=datetime.utcnow() if status == "completed" else None,
    )
    session.add(reconciliation)
    await session.commit()
    return reconciliation


async def list_reconciliations(
    session: AsyncSession,
    company_id: str,
    account_id: str | None = None,
) -> list[models.Reconciliation]:
    query = tenant_select(models.Reconciliation, company_id)
    if account_id:
        query = query.where(models.Reconciliation.account_id == account_id)
    result = await session.execute(query.order_by(models.Reconciliation.reconciliation_date.desc()))
    return list(result.scalars().all())
