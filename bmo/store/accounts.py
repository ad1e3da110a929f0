"""Chart of accounts."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from bmo import models
from bmo.errors import NotFoundError, ValidationError
from bmo.tenancy import tenant_select
from config.seed_data import STARTER_CHART_OF_ACCOUNTS

logger = logging.getLogger(__name__)

ACCOUNT_TYPES = ("asset", "liability", "equity", "revenue", "expense")
BALANCE_TYPES = ("debit", "credit")
UPDATABLE_FIELDS = {"account_code", "account_name", "account_type", "parent_account_id", "balance_type", "is_active"}


def _validate(data: dict[str, Any]) -> None:
    if "account_type" in data and data["account_type"] not in ACCOUNT_TYPES:
        raise ValidationError(f"Invalid account_type: {data['account_type']}")
    if "balance_type" in data and data["balance_type"] not in BALANCE_TYPES:
        raise ValidationError(f"Invalid balance_type: {data['balance_type']}")


async def list_accounts(
    session: AsyncSession,
    company_id: str,
    *,
    active_only: bool = True,
    account_type: str | None = None,
) -> list[models.ChartOfAccount]:
    query = tenant_select(models.ChartOfAccount, company_id)
    if active_only:
        query = query.where(models.ChartOfAccount.is_active.is_(True))
    if account_type:
        query = query.where(models.ChartOfAccount.account_type == account_type)
    result = await session.execute(query.order_by(models.ChartOfAccount.account_code))
    return list(result.scalars().all())


async def get_account(session: AsyncSession, company_id: str, account_id: str) -> models.ChartOfAccount | None:
    result = await session.execute(
        tenant_select(models.ChartOfAccount, company_id).where(models.ChartOfAccount.id == account_id)
    )
    return result.scalar_one_or_none()


async def create_account(
    session: AsyncSession,
    company_id: str,
    *,
    account_code: str,
    account_name: str,
    account_type: str,
    balance_type: str,
    parent_account_id: str | None = None,
) -> models.ChartOfAccount:
    _validate({"account_type": account_type, "balance_type": balance_type})
    if parent_account_id and await get_account(session, company_id, parent_account_id) is None:
        raise NotFoundError("Parent account not found")

    account = models.ChartOfAccount(
        company_id=company_id,
        account_code=account_code,
        account_name=account_name,
        account_type=account_type,
        balance_type=balance_type,
        parent_account_id=parent_account_id,
        is_active=True,
    )
    session.add(account)
    await session.commit()
    return account


async def update_account(
    session: AsyncSession,
    company_id: str,
    account_id: str,
    data: dict[str, Any],
) -> models.ChartOfAccount:
    updates = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS and v is not None}
    if not updates:
        raise ValidationError("No fields to update")
    _validate(updates)

    account = await get_account(session, company_id, account_id)
    if account is None:
        raise NotFoundError("Account not found")

    for key, value in updates.items():
        setattr(account, key, value)
    await session.commit()
    return account


async def deactivate_account(session: AsyncSession, company_id: str, account_id: str) -> models.ChartOfAccount:
    return await update_account(session, company_id, account_id, {"is_active": False})


async def seed_chart_of_accounts(session: AsyncSession, company_id: str) -> int:
    """Create the starter accounts a company does not have yet."""
    existing = {a.account_code for a in await list_accounts(session, company_id, active_only=False)}
    created = 0
    for template in STARTER_CHART_OF_ACCOUNTS:
        if template["account_code"] in existing:
            continue
        session.add(models.ChartOfAccount(company_id=company_id, is_active=True, **template))
        created += 1
    if created:
        await session.commit()
        logger.info(f"Seeded {created} account(s) for company {company_id}")
    return created
