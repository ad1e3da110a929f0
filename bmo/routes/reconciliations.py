"""Bank reconciliation endpoints."""
from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from bmo.auth import CurrentUser, require_company, require_permission
from bmo.db import get_session
from bmo.pipelines.reconciliation import StatementLine, ai_reconcile, create_reconciliation
from bmo.statements import parse_statement
from bmo.store.reconciliations import list_reconciliations

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliations", tags=["Reconciliation"])


class ReconciliationRequest(BaseModel):
    account_id: str
    reconciliation_date: date
    statement_balance: float


class StatementLineModel(BaseModel):
    date: date
    amount: float
    description: str = ""


class AIReconcileRequest(BaseModel):
    account_id: str
    reconciliation_date: date
    statement_lines: list[StatementLineModel] = Field(min_length=1)


@router.post("", status_code=status.HTTP_201_CREATED)
async def reconcile_balance(
    payload: ReconciliationRequest,
    current: CurrentUser = Depends(require_permission("write")),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    """Compare a statement balance with the ledger as of a date."""
    reconciliation = await create_reconciliation(
        session,
        company_id,
        payload.account_id,
        payload.reconciliation_date,
        payload.statement_balance,
        current.user_id,
    )
    return reconciliation.to_dict()


@router.get("")
async def list_all(
    account_id: str | None = None,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    return [r.to_dict() for r in await list_reconciliations(session, company_id, account_id)]


@router.post("/ai")
async def reconcile_lines(
    payload: AIReconcileRequest,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    """Suggest ledger matches for statement lines."""
    lines = [
        StatementLine(date=item.date, amount=item.amount, description=item.description)
        for item in payload.statement_lines
    ]
    result = await ai_reconcile(session, company_id, payload.account_id, lines, payload.reconciliation_date)
    return result.to_dict()


@router.post("/statements/parse")
async def parse_uploaded_statement(
    file: UploadFile = File(..., description="Bank statement (CSV, Excel or PDF)"),
    company_id: str = Depends(require_company),
):
    """Read statement lines from an uploaded file without matching them."""
    try:
        lines = parse_statement(await file.read(), file.filename or "")
    finally:
        await file.close()
    return {"count": len(lines), "lines": [line.to_dict() for line in lines]}


@router.post("/statements/reconcile")
async def reconcile_uploaded_statement(
    file: UploadFile = File(..., description="Bank statement (CSV, Excel or PDF)"),
    account_id: str = Form(...),
    reconciliation_date: date = Form(...),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    """Import a statement file and match its lines against the ledger."""
    try:
        lines = parse_statement(await file.read(), file.filename or "")
    finally:
        await file.close()
    logger.info(f"Reconciling {len(lines)} imported line(s) for account {account_id}", extra={"company_id": company_id})
    result = await ai_reconcile(session, company_id, account_id, lines, reconciliation_date)
    return result.to_dict()
