"""Chart of accounts endpoints."""
from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from bmo.auth import require_company, require_permission
from bmo.db import get_session
from bmo.errors import NotFoundError
from bmo.store import accounts
from bmo.store.transactions import get_account_balance

router = APIRouter(prefix="/accounts", tags=["Accounts"])


class AccountRequest(BaseModel):
    account_code: str = Field(min_length=1, max_length=50)
    account_name: str = Field(min_length=1, max_length=255)
    account_type: str
    balance_type: str
    parent_account_id: str | None = None


class AccountUpdateRequest(BaseModel):
    account_code: str | None = None
    account_name: str | None = None
    account_type: str | None = None
    balance_type: str | None = None
    parent_account_id: str | None = None
    is_active: bool | None = None


@router.get("")
async def list_accounts(
    active_only: bool = True,
    account_type: str | None = None,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    rows = await accounts.list_accounts(session, company_id, active_only=active_only, account_type=account_type)
    return [a.to_dict() for a in rows]


@router.post("", status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_permission("write"))])
async def create_account(
    payload: AccountRequest,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    account = await accounts.create_account(session, company_id, **payload.model_dump())
    return account.to_dict()


@router.post("/seed", dependencies=[Depends(require_permission("write"))])
async def seed_accounts(
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    """Add the starter chart of accounts."""
    return {"created": await accounts.seed_chart_of_accounts(session, company_id)}


@router.get("/{account_id}")
async def get_account(
    account_id: str,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    account = await accounts.get_account(session, company_id, account_id)
    if account is None:
        raise NotFoundError("Account not found")
    return account.to_dict()


@router.get("/{account_id}/balance")
async def account_balance(
    account_id: str,
    as_of: date | None = Query(default=None),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    balance = await get_account_balance(session, company_id, account_id, as_of=as_of)
    return {"account_id": account_id, "as_of": as_of.isoformat() if as_of else None, "balance": balance}


@router.patch("/{account_id}", dependencies=[Depends(require_permission("write"))])
async def update_account(
    account_id: str,
    payload: AccountUpdateRequest,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    account = await accounts.update_account(session, company_id, account_id, payload.model_dump(exclude_none=True))
    return account.to_dict()


@router.delete("/{account_id}", dependencies=[Depends(require_permission("write"))])
async def deactivate_account(
    account_id: str,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    account = await accounts.deactivate_account(session, company_id, account_id)
    return account.to_dict()
