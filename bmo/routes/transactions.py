"""Journal transaction endpoints, including exports."""
from __future__ import annotations

import logging
from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from bmo.auth import CurrentUser, require_company, require_permission
from bmo.db import get_session
from bmo.errors import NotFoundError
from bmo.exports import render_rows, transaction_rows
from bmo.store import transactions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transactions", tags=["Transactions"])


class LineRequest(BaseModel):
    account_id: str
    debit_amount: float = Field(default=0.0, ge=0)
    credit_amount: float = Field(default=0.0, ge=0)
    description: str | None = None


class TransactionRequest(BaseModel):
    transaction_date: date
    transaction_type: str = Field(min_length=1, max_length=50)
    lines: list[LineRequest]
    transaction_number: str | None = None
    description: str | None = None
    amount: float | None = None
    currency_code: str = Field(default="USD", min_length=3, max_length=3)


class StatusRequest(BaseModel):
    status: Literal["pending", "approved", "rejected", "posted"]


def _detail(detail: transactions.TransactionDetail) -> dict:
    return {
        **detail.transaction.to_dict(),
        "lines": [
            {
                **item.line.to_dict(),
                "account_code": item.account_code,
                "account_name": item.account_name,
                "account_type": item.account_type,
            }
            for item in detail.lines
        ],
    }


@router.get("")
async def list_transactions(
    start: date | None = None,
    end: date | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    transaction_type: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    rows = await transactions.list_transactions(
        session,
        company_id,
        start=start,
        end=end,
        status=status_filter,
        transaction_type=transaction_type,
        limit=limit,
        offset=offset,
    )
    return [t.to_dict() for t in rows]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_transaction(
    payload: TransactionRequest,
    current: CurrentUser = Depends(require_permission("write")),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    txn = await transactions.create_transaction(
        session,
        company_id,
        transaction_date=payload.transaction_date,
        transaction_type=payload.transaction_type,
        lines=[line.model_dump() for line in payload.lines],
        created_by=current.user_id,
        transaction_number=payload.transaction_number,
        description=payload.description,
        amount=payload.amount,
        currency_code=payload.currency_code,
    )
    return txn.to_dict()


@router.get("/export")
async def export_transactions(
    export_format: Literal["csv", "xlsx", "pdf"] = Query(default="csv", alias="format"),
    start: date | None = None,
    end: date | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    """Download transactions as CSV, XLSX or PDF."""
    rows = await transactions.list_transactions(
        session, company_id, start=start, end=end, status=status_filter, limit=10_000
    )
    content, media_type, extension = render_rows(transaction_rows(rows), export_format, "Transactions")
    filename = f"transactions_{date.today().isoformat()}.{extension}"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/search")
async def search_transactions(
    q: str = Query(min_length=1),
    limit: int = Query(default=10, ge=1, le=100),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    rows = await transactions.search_transactions(session, company_id, q, limit=limit)
    return [t.to_dict() for t in rows]


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    detail = await transactions.get_transaction(session, company_id, transaction_id)
    if detail is None:
        raise NotFoundError("Transaction not found")
    return _detail(detail)


@router.patch("/{transaction_id}/status")
async def update_status(
    transaction_id: str,
    payload: StatusRequest,
    current: CurrentUser = Depends(require_permission("approve")),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    txn = await transactions.update_transaction_status(
        session, company_id, transaction_id, payload.status, user_id=current.user_id
    )
    return txn.to_dict()
