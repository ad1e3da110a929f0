"""Audit trail endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from bmo.auth import CurrentUser, get_current_user, require_company, require_permission
from bmo.db import get_session
from bmo.store.audit import create_audit_log, list_audit_logs

router = APIRouter(prefix="/audit-logs", tags=["Audit"])


class AuditRequest(BaseModel):
    action: str
    resource_type: str
    resource_id: str
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("", status_code=status.HTTP_201_CREATED)
async def record(
    payload: AuditRequest,
    request: Request,
    current: CurrentUser = Depends(get_current_user),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    """Record an action taken in the client, stamped with caller IP and user agent."""
    entry = await create_audit_log(
        session,
        company_id=company_id,
        user_id=current.user_id,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        **payload.model_dump(),
    )
    return entry.to_dict()


@router.get("", dependencies=[Depends(require_permission("audit"))])
async def list_logs(
    user_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    action: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    rows = await list_audit_logs(
        session,
        company_id,
        user_id=user_id,
        resource_type=resource_type,
        resource_id=resource_id,
        action=action,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )
    return [r.to_dict() for r in rows]
