"""Team invitations: create, look up by token, accept, expire."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from bmo import models
from bmo.errors import NotFoundError, ValidationError

from .roles import get_role_by_name

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_DAYS = 7


@dataclass
class InvitationRow:
    """Invitation joined with its role and inviter names."""
    invitation: models.Invitation
    role_name: str | None
    inviter_name: str | None


async def create_invitation(
    session: AsyncSession,
    *,
    email: str,
    role_name: str,
    company_id: str,
    invited_by: str | None,
    expires_in_days: int = DEFAULT_EXPIRY_DAYS,
) -> models.Invitation:
    """Create a pending invitation with a random token.

    Raises:
        ValidationError: If the role does not exist
    """
    role = await get_role_by_name(session, role_name)
    if role is None:
        raise ValidationError(f"Role '{role_name}' not found")

    invitation = models.Invitation(
        id=str(uuid.uuid4()),
        email=email,
        role_id=role.id,
        company_id=company_id,
        invited_by=invited_by,
        status="pending",
        token=str(uuid.uuid4()),
        expires_at=datetime.utcnow() + timedelta(days=expires_in_days),
    )
    session.add(invitation)
    await session.commit()
    logger.info(f"Invitation {invitation.id} created for {email} with role {role_name}")
    return invitation


async def get_invitation_by_token(session: AsyncSession, token: str) -> models.Invitation | None:
    """Only pending, unexpired invitations are returned."""
    result = await session.execute(
        select(models.Invitation).where(
            models.Invitation.token == token,
            models.Invitation.status == "pending",
            models.Invitation.expires_at > datetime.utcnow(),
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def list_company_invitations(session: AsyncSession, company_id: str) -> list[InvitationRow]:
    inviter = aliased(models.User)
    result = await session.execute(
        select(models.Invitation, models.Role.name, inviter.name)
        .outerjoin(models.Role, models.Invitation.role_id == models.Role.id)
        .outerjoin(inviter, models.Invitation.invited_by == inviter.id)
        .where(models.Invitation.company_id == company_id)
        .order_by(models.Invitation.created_at.desc())
    )
    return [
        InvitationRow(invitation=invitation, role_name=role_name, inviter_name=inviter_name)
        for invitation, role_name, inviter_name in result.all()
    ]


async def update_invitation_role(
    session: AsyncSession, company_id: str, invitation_id: str, role_id: str
) -> models.Invitation:
    invitation = await session.get(models.Invitation, invitation_id)
    if invitation is None or invitation.company_id != company_id:
        raise NotFoundError("Invitation not found")
    invitation.role_id = role_id
    await session.commit()
    return invitation


async def delete_invitation(session: AsyncSession, company_id: str, invitation_id: str) -> None:
    await session.execute(
        delete(models.Invitation).where(
            models.Invitation.id == invitation_id,
            models.Invitation.company_id == company_id,
        )
    )
    await session.commit()


async def accept_invitation(
    session: AsyncSession,
    token: str,
    appwrite_user_id: str,
    name: str,
) -> models.User:
    """Attach the invitee to the inviting company with the invited role.

    An existing user with the invited email is updated; otherwise one is
    created. The invitation is then marked accepted.

    Raises:
        NotFoundError: If the token is unknown, used or expired
    """
    invitation = await get_invitation_by_token(session, token)
    if invitation is None:
        raise NotFoundError("Invitation not found or expired")

    result = await session.execute(select(models.User).where(models.User.email == invitation.email).limit(1))
    user = result.scalar_one_or_none()
    if user is None:
        user = models.User(email=invitation.email)
        session.add(user)

    user.appwrite_user_id = appwrite_user_id
    user.name = name
    user.role_id = invitation.role_id
    user.company_id = invitation.company_id
    user.is_active = True

    invitation.status = "accepted"
    await session.commit()
    logger.info(f"Invitation {invitation.id} accepted by {invitation.email}")
    return user


async def mark_expired_invitations(session: AsyncSession) -> int:
    """Flag past-due pending invitations as expired. Returns the count."""
    result = await session.execute(
        update(models.Invitation)
        .where(
            models.Invitation.status == "pending",
            models.Invitation.expires_at < datetime.utcnow(),
        )
        .values(status="expired", updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount or 0
