"""Company (tenant) records."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bmo import models
from bmo.errors import NotFoundError, ValidationError

from .roles import get_role_by_name

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "name",
    "legal_name",
    "tax_id",
    "address",
    "phone",
    "phone_country_code",
    "email",
    "website",
    "currency_code",
    "fiscal_year_start",
    "timezone",
    "is_active",
}


async def get_company(session: AsyncSession, company_id: str) -> models.Company | None:
    return await session.get(models.Company, company_id)


async def create_company(session: AsyncSession, *, name: str, **fields: Any) -> models.Company:
    """Create a company; currency defaults to USD and timezone to UTC."""
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown company fields: {', '.join(sorted(unknown))}")

    company = models.Company(
        name=name,
        currency_code=fields.pop("currency_code", None) or "USD",
        timezone=fields.pop("timezone", None) or "UTC",
        is_active=True,
        **fields,
    )
    session.add(company)
    await session.commit()
    logger.info(f"Created company {company.id}: {name}")
    return company


async def update_company(session: AsyncSession, company_id: str, data: dict[str, Any]) -> models.Company:
    """Apply a partial update.

    Raises:
        ValidationError: If ``data`` has nothing to update
        NotFoundError: If the company does not exist
    """
    updates = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS and v is not None}
    if not updates:
        raise ValidationError("No fields to update")

    company = await get_company(session, company_id)
    if company is None:
        raise NotFoundError("Company not found")

    for key, value in updates.items():
        setattr(company, key, value)
    await session.commit()
    return company


async def list_companies(session: AsyncSession) -> list[models.Company]:
    """Active companies, by name."""
    result = await session.execute(
        select(models.Company).where(models.Company.is_active.is_(True)).order_by(models.Company.name)
    )
    return list(result.scalars().all())


async def onboard_company(session: AsyncSession, user: models.User, *, name: str, **fields: Any) -> models.Company:
    """Create a company and make ``user`` its admin."""
    admin_role = await get_role_by_name(session, "admin")
    if admin_role is None:
        raise NotFoundError("Admin role not found")

    company = await create_company(session, name=name, **fields)
    user.company_id = company.id
    user.role_id = admin_role.id
    await session.commit()
    logger.info(f"User {user.id} onboarded company {company.id} as admin")
    return company
