"""Financial statement endpoints: SOFP, SOPL, exports and AI summaries."""
from __future__ import annotations

import logging
from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from bmo.auth import require_company
from bmo.db import get_session
from bmo.errors import ValidationError
from bmo.exports import render_rows
from bmo.pipelines.reporting import generate_sofp, generate_sopl, sofp_rows, sopl_rows, summarize_report

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["Reports"])

ReportKind = Literal["sofp", "sopl"]
TITLES = {"sofp": "Statement of Financial Position", "sopl": "Statement of Profit or Loss"}


async def _build(session: AsyncSession, company_id: str, kind: str, as_of, start, end):
    if kind == "sofp":
        return await generate_sofp(session, company_id, as_of)
    if not (start and end):
        raise ValidationError("start and end dates are required")
    if start > end:
        raise ValidationError("Start date must not be after end date")
    return await generate_sopl(session, company_id, start, end)


@router.get("/sofp")
async def statement_of_financial_position(
    as_of: date | None = None,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    report = await generate_sofp(session, company_id, as_of)
    return report.to_dict()


@router.get("/sopl")
async def statement_of_profit_or_loss(
    start: date,
    end: date,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    report = await _build(session, company_id, "sopl", None, start, end)
    return report.to_dict()


@router.get("/{kind}/export")
async def export_report(
    kind: ReportKind,
    export_format: Literal["csv", "xlsx", "pdf"] = Query(default="pdf", alias="format"),
    as_of: date | None = None,
    start: date | None = None,
    end: date | None = None,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    """Download a report as CSV, XLSX or PDF."""
    report = await _build(session, company_id, kind, as_of, start, end)
    rows = sofp_rows(report) if kind == "sofp" else sopl_rows(report)
    content, media_type, extension = render_rows(rows, export_format, TITLES[kind])

    stamp = (as_of or date.today()).isoformat() if kind == "sofp" else f"{start.isoformat()}_{end.isoformat()}"
    filename = f"{kind}_{stamp}.{extension}"
    logger.info(f"Exported {kind} as {export_format}", extra={"company_id": company_id})
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{kind}/summary")
async def report_summary(
    kind: ReportKind,
    as_of: date | None = None,
    start: date | None = None,
    end: date | None = None,
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    """Analyst-style commentary on a report from the chat model."""
    report = await _build(session, company_id, kind, as_of, start, end)
    return {"report": report.to_dict(), "summary": await summarize_report(report)}
