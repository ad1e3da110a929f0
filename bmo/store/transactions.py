"""Journal entries and their debit/credit lines."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, Mapping

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bmo import models
from bmo.errors import NotFoundError, ValidationError
from bmo.tenancy import tenant_select

from .audit import add_audit_log

logger = logging.getLogger(__name__)

BALANCE_TOLERANCE = 0.01
TRANSACTION_STATUSES = ("pending", "approved", "rejected", "posted")
_STATUS_ACTIONS = {"approved": "approve", "rejected": "reject"}


@dataclass
class LineDetail:
    """A transaction line joined with its account."""
    line: models.TransactionLine
    account_code: str
    account_name: str
    account_type: str


@dataclass
class TransactionDetail:
    transaction: models.Transaction
    lines: list[LineDetail]


def _snapshot(txn: models.Transaction) -> dict[str, Any]:
    return {
        "status": txn.status,
        "amount": txn.amount,
        "transaction_type": txn.transaction_type,
        "transaction_date": txn.transaction_date.isoformat() if txn.transaction_date else None,
    }


async def list_transactions(
    session: AsyncSession,
    company_id: str,
    *,
    start: date | None = None,
    end: date | None = None,
    status: str | None = None,
    transaction_type: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[models.Transaction]:
    query = tenant_select(models.Transaction, company_id)
    if start:
        query = query.where(models.Transaction.transaction_date >= start)
    if end:
        query = query.where(models.Transaction.transaction_date <= end)
    if status:
        query = query.where(models.Transaction.status == status)
    if transaction_type:
        query = query.where(models.Transaction.transaction_type == transaction_type)

    query = (
        query.order_by(models.Transaction.transaction_date.desc(), models.Transaction.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await session.execute(query)
    return list(result.scalars().all())


async def get_transaction(session: AsyncSession, company_id: str, transaction_id: str) -> TransactionDetail | None:
    result = await session.execute(
        tenant_select(models.Transaction, company_id)
        .where(models.Transaction.id == transaction_id)
        .options(selectinload(models.Transaction.lines).selectinload(models.TransactionLine.account))
        .execution_options(populate_existing=True)
    )
    txn = result.scalar_one_or_none()
    if txn is None:
        return None

    lines = [
        LineDetail(
            line=line,
            account_code=line.account.account_code,
            account_name=line.account.account_name,
            account_type=line.account.account_type,
        )
        for line in txn.lines
    ]
    return TransactionDetail(transaction=txn, lines=lines)


def check_balanced(lines: Iterable[Mapping[str, Any]]) -> tuple[float, float]:
    """Return (total_debit, total_credit) or raise if they differ by more than a cent."""
    total_debit = 0.0
    total_credit = 0.0
    for line in lines:
        total_debit += float(line.get("debit_amount") or 0)
        total_credit += float(line.get("credit_amount") or 0)
    if abs(total_debit - total_credit) > BALANCE_TOLERANCE:
        raise ValidationError("Transaction must be balanced (debits = credits)")
    return total_debit, total_credit


async def create_transaction(
    session: AsyncSession,
    company_id: str,
    *,
    transaction_date: date,
    transaction_type: str,
    lines: list[Mapping[str, Any]],
    created_by: str | None = None,
    transaction_number: str | None = None,
    description: str | None = None,
    amount: float | None = None,
    currency_code: str = "USD",
) -> models.Transaction:
    """Create a pending journal entry with its lines and an audit record.

    Args:
        lines: Dicts with ``account_id``, ``debit_amount``, ``credit_amount``
            and optional ``description``
        amount: Header amount; defaults to the debit total

    Raises:
        ValidationError: If there are no lines or they do not balance
    """
    if not lines:
        raise ValidationError("Transaction requires at least one line")
    total_debit, _ = check_balanced(lines)

    txn = models.Transaction(
        company_id=company_id,
        transaction_date=transaction_date,
        transaction_number=transaction_number,
        description=description,
        transaction_type=transaction_type,
        amount=amount if amount is not None else round(total_debit, 2),
        currency_code=currency_code,
        status="pending",
        created_by=created_by,
    )
    for order, line in enumerate(lines):
        txn.lines.append(
            models.TransactionLine(
                account_id=line["account_id"],
                debit_amount=float(line.get("debit_amount") or 0),
                credit_amount=float(line.get("credit_amount") or 0),
                description=line.get("description"),
                line_order=order,
            )
        )
    session.add(txn)
    await session.flush()

    add_audit_log(
        session,
        company_id=company_id,
        user_id=created_by,
        action="create",
        resource_type="transaction",
        resource_id=txn.id,
        new_values=_snapshot(txn),
    )
    await session.commit()
    logger.info(f"Created transaction {txn.id} ({transaction_type}) for company {company_id}")
    return txn


async def update_transaction_status(
    session: AsyncSession,
    company_id: str,
    transaction_id: str,
    status: str,
    user_id: str | None = None,
) -> models.Transaction:
    """Move a transaction to a new status.

    Approving or posting records ``approved_by``; posting also stamps
    ``posted_at``.
    """
    if status not in TRANSACTION_STATUSES:
        raise ValidationError(f"Invalid status: {status}")

    result = await session.execute(
        tenant_select(models.Transaction, company_id).where(models.Transaction.id == transaction_id)
    )
    txn = result.scalar_one_or_none()
    if txn is None:
        raise NotFoundError("Transaction not found")

    old_values = _snapshot(txn)
    txn.status = status
    if status in ("approved", "posted"):
        txn.approved_by = user_id
    if status == "posted":
        txn.posted_at = datetime.utcnow()

    add_audit_log(
        session,
        company_id=company_id,
        user_id=user_id,
        action=_STATUS_ACTIONS.get(status, "update"),
        resource_type="transaction",
        resource_id=txn.id,
        old_values=old_values,
        new_values=_snapshot(txn),
    )
    await session.commit()
    return txn


async def get_account_balance(
    session: AsyncSession,
    company_id: str,
    account_id: str,
    as_of: date | None = None,
) -> float:
    """Balance of one account from posted lines.

    Debit-type accounts are debit minus credit, credit-type accounts the
    reverse. Accounts with no posted lines are 0.
    """
    account = await session.get(models.ChartOfAccount, account_id)
    if account is None or account.company_id != company_id:
        raise NotFoundError("Account not found")

    query = (
        select(
            func.coalesce(func.sum(models.TransactionLine.debit_amount), 0),
            func.coalesce(func.sum(models.TransactionLine.credit_amount), 0),
        )
        .join(models.Transaction, models.TransactionLine.transaction_id == models.Transaction.id)
        .where(
            models.TransactionLine.account_id == account_id,
            models.Transaction.company_id == company_id,
            models.Transaction.status == "posted",
        )
    )
    if as_of:
        query = query.where(models.Transaction.transaction_date <= as_of)

    debit, credit = (await session.execute(query)).one()
    return natural_balance(account.balance_type, float(debit or 0), float(credit or 0))


async def search_transactions(
    session: AsyncSession,
    company_id: str,
    keyword: str,
    limit: int = 10,
) -> list[models.Transaction]:
    """Case-insensitive match on description or transaction type, newest first."""
    pattern = f"%{keyword}%"
    result = await session.execute(
        tenant_select(models.Transaction, company_id)
        .where(
            or_(
                models.Transaction.description.ilike(pattern),
                models.Transaction.transaction_type.ilike(pattern),
            )
        )
        .order_by(models.Transaction.transaction_date.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_posted_between(
    session: AsyncSession,
    company_id: str,
    start: date | None = None,
    end: date | None = None,
    transaction_types: Iterable[str] | None = None,
) -> list[models.Transaction]:
    """Posted transactions in a date window, oldest first."""
    query = tenant_select(models.Transaction, company_id).where(models.Transaction.status == "posted")
    if start:
        query = query.where(models.Transaction.transaction_date >= start)
    if end:
        query = query.where(models.Transaction.transaction_date <= end)
    if transaction_types:
        query = query.where(models.Transaction.transaction_type.in_(list(transaction_types)))
    result = await session.execute(query.order_by(models.Transaction.transaction_date))
    return list(result.scalars().all())


async def posted_line_totals(
    session: AsyncSession,
    company_id: str,
    start: date | None = None,
    end: date | None = None,
) -> dict[str, tuple[float, float]]:
    """Debit and credit totals of posted lines per account, optionally within a date window."""
    query = (
        select(
            models.TransactionLine.account_id,
            func.coalesce(func.sum(models.TransactionLine.debit_amount), 0),
            func.coalesce(func.sum(models.TransactionLine.credit_amount), 0),
        )
        .join(models.Transaction, models.TransactionLine.transaction_id == models.Transaction.id)
        .where(
            models.Transaction.company_id == company_id,
            models.Transaction.status == "posted",
        )
        .group_by(models.TransactionLine.account_id)
    )
    if start:
        query = query.where(models.Transaction.transaction_date >= start)
    if end:
        query = query.where(models.Transaction.transaction_date <= end)

    result = await session.execute(query)
    return {account_id: (float(debit or 0), float(credit or 0)) for account_id, debit, credit in result.all()}


def natural_balance(balance_type: str, debit: float, credit: float) -> float:
    """Debit-type accounts are debit minus credit; credit-type accounts the reverse."""
    balance = debit - credit if balance_type == "debit" else credit - debit
    return round(balance, 2)
