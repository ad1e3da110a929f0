"""Team invitations: provision the invitee in Appwrite and record the invitation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from bmo.appwrite import AppwriteClient, get_appwrite_client
from bmo.errors import ValidationError
from bmo.store.invitations import create_invitation
from bmo.store.roles import get_role_by_name
from bmo.store.users import get_user_by_appwrite_id

logger = logging.getLogger(__name__)


@dataclass
class InviteResult:
    user_id: str
    invitation_id: str
    token: str
    message: str = "User invitation created successfully"

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "user_id": self.user_id,
            "invitation_id": self.invitation_id,
            "token": self.token,
            "message": self.message,
        }


async def invite_user(
    session: AsyncSession,
    *,
    email: str | None,
    role_name: str | None,
    company_id: str | None,
    invited_by: str | None,
    appwrite: AppwriteClient | None = None,
) -> InviteResult:
    """Invite someone to a company with a role.

    Args:
        email: Invitee email
        role_name: One of the seeded role names
        company_id: Inviting company
        invited_by: Appwrite user id of the inviter

    Raises:
        ValidationError: If a field is missing or the role does not exist
        AppwriteError: If the invitee cannot be provisioned
    """
    if not (email and role_name and company_id and invited_by):
        raise ValidationError("Missing required fields: email, role, companyId, invitedBy")

    if await get_role_by_name(session, role_name) is None:
        raise ValidationError(f"Role '{role_name}' not found")

    client = appwrite or get_appwrite_client()
    appwrite_user = await client.get_or_create_user(email)

    inviter = await get_user_by_appwrite_id(session, invited_by)
    invitation = await create_invitation(
        session,
        email=email,
        role_name=role_name,
        company_id=company_id,
        invited_by=inviter.id if inviter else None,
    )
    logger.info(f"Invitation created for {email} with role {role_name}", extra={"company_id": company_id})
    return InviteResult(user_id=appwrite_user["$id"], invitation_id=invitation.id, token=invitation.token)
