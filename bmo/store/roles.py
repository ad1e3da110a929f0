"""Roles and their permission maps."""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bmo import models
from config.seed_data import DEFAULT_ROLES

logger = logging.getLogger(__name__)


async def list_roles(session: AsyncSession) -> list[models.Role]:
    result = await session.execute(select(models.Role).order_by(models.Role.name))
    return list(result.scalars().all())


async def get_role(session: AsyncSession, role_id: str) -> models.Role | None:
    return await session.get(models.Role, role_id)


async def get_role_by_name(session: AsyncSession, name: str) -> models.Role | None:
    result = await session.execute(select(models.Role).where(models.Role.name == name).limit(1))
    return result.scalar_one_or_none()


async def ensure_default_roles(session: AsyncSession) -> int:
    """Insert any missing default roles. Returns how many were created."""
    created = 0
    for role in DEFAULT_ROLES:
        if await get_role_by_name(session, role["name"]) is None:
            session.add(models.Role(**role))
            created += 1
    if created:
        await session.commit()
        logger.info(f"Seeded {created} default role(s)")
    return created
