"""Audit trail."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from bmo import models
from bmo.tenancy import tenant_select

logger = logging.getLogger(__name__)


def add_audit_log(
    session: AsyncSession,
    *,
    company_id: str,
    user_id: str | None,
    action: str,
    resource_type: str,
    resource_id: str,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> models.AuditLog:
    """Stage an audit row in the caller's unit of work (no commit)."""
    entry = models.AuditLog(
        company_id=company_id,
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        old_values=old_values,
        new_values=new_values,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    session.add(entry)
    return entry


async def create_audit_log(session: AsyncSession, **fields: Any) -> models.AuditLog:
    entry = add_audit_log(session, **fields)
    await session.commit()
    logger.debug(f"Audit {entry.action} on {entry.resource_type}/{entry.resource_id}")
    return entry


async def list_audit_logs(
    session: AsyncSession,
    company_id: str,
    *,
    user_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    action: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[models.AuditLog]:
    query = tenant_select(models.AuditLog, company_id)
    if user_id:
        query = query.where(models.AuditLog.user_id == user_id)
    if resource_type:
        query = query.where(models.AuditLog.resource_type == resource_type)
    if resource_id:
        query = query.where(models.AuditLog.resource_id == resource_id)
    if action:
        query = query.where(models.AuditLog.action == action)
    if start:
        query = query.where(models.AuditLog.created_at >= start)
    if end:
        query = query.where(models.AuditLog.created_at <= end)

    query = query.order_by(models.AuditLog.created_at.desc()).limit(limit).offset(offset)
    result = await session.execute(query)
    return list(result.scalars().all())
