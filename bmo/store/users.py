"""Users mirrored from Appwrite, keyed by ``appwrite_user_id``."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bmo import models
from bmo.errors import NotFoundError

logger = logging.getLogger(__name__)


@dataclass
class UserDetails:
    """A user together with its role and company."""
    user: models.User
    role: models.Role | None
    company: models.Company | None


async def get_user_by_appwrite_id(session: AsyncSession, appwrite_user_id: str) -> models.User | None:
    result = await session.execute(
        select(models.User).where(models.User.appwrite_user_id == appwrite_user_id).limit(1)
    )
    return result.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, email: str) -> models.User | None:
    result = await session.execute(select(models.User).where(models.User.email == email).limit(1))
    return result.scalar_one_or_none()


async def upsert_user(
    session: AsyncSession,
    appwrite_user_id: str,
    email: str,
    name: str,
    *,
    company_id: str | None = None,
    role_id: str | None = None,
) -> models.User:
    """Create or update the mirrored user.

    Email and name are always overwritten; company and role keep their
    current values unless new ones are given.
    """
    user = await get_user_by_appwrite_id(session, appwrite_user_id)
    if user is None:
        user = models.User(
            appwrite_user_id=appwrite_user_id,
            email=email,
            name=name,
            company_id=company_id,
            role_id=role_id,
            is_active=True,
        )
        session.add(user)
        logger.info(f"Created user for appwrite id {appwrite_user_id}")
    else:
        user.email = email
        user.name = name
        user.company_id = company_id or user.company_id
        user.role_id = role_id or user.role_id

    await session.commit()
    return user


async def get_user_with_details(session: AsyncSession, appwrite_user_id: str) -> UserDetails | None:
    user = await get_user_by_appwrite_id(session, appwrite_user_id)
    if user is None:
        return None

    role = await session.get(models.Role, user.role_id) if user.role_id else None
    company = await session.get(models.Company, user.company_id) if user.company_id else None
    return UserDetails(user=user, role=role, company=company)


async def _require_user(session: AsyncSession, appwrite_user_id: str) -> models.User:
    user = await get_user_by_appwrite_id(session, appwrite_user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def update_user_company(session: AsyncSession, appwrite_user_id: str, company_id: str) -> models.User:
    user = await _require_user(session, appwrite_user_id)
    user.company_id = company_id
    await session.commit()
    return user


async def update_user_role(session: AsyncSession, appwrite_user_id: str, role_id: str) -> models.User:
    user = await _require_user(session, appwrite_user_id)
    user.role_id = role_id
    await session.commit()
    return user


async def update_user_name(session: AsyncSession, appwrite_user_id: str, name: str) -> models.User:
    user = await _require_user(session, appwrite_user_id)
    user.name = name
    await session.commit()
    return user


async def update_user_email(session: AsyncSession, appwrite_user_id: str, email: str) -> models.User:
    user = await _require_user(session, appwrite_user_id)
    user.email = email
    await session.commit()
    return user


async def record_login(session: AsyncSession, user: models.User) -> None:
    user.last_login = datetime.utcnow()
    await session.commit()


async def list_company_users(session: AsyncSession, company_id: str) -> list[models.User]:
    result = await session.execute(
        select(models.User).where(models.User.company_id == company_id).order_by(models.User.name)
    )
    return list(result.scalars().all())
