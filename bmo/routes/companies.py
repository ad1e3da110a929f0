"""Company, user, role and invitation endpoints."""
from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from bmo.auth import CurrentUser, get_current_user, require_company, require_permission
from bmo.db import get_session
from bmo.errors import AuthenticationError, NotFoundError, ValidationError
from bmo.pipelines.invites import invite_user
from bmo.store import companies, invitations, roles, users
from bmo.tenancy import validate_tenant_access

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Companies"])


class CompanyRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    legal_name: str | None = None
    tax_id: str | None = None
    address: str | None = None
    phone: str | None = None
    phone_country_code: str | None = None
    email: str | None = None
    website: str | None = None
    currency_code: str | None = Field(default=None, min_length=3, max_length=3)
    fiscal_year_start: date | None = None
    timezone: str | None = None


class InviteRequest(BaseModel):
    email: str
    role: str


class InvitationRoleRequest(BaseModel):
    role_id: str


class UserRoleRequest(BaseModel):
    role_id: str


# Companies


@router.post("/companies", status_code=status.HTTP_201_CREATED)
async def create_company(
    payload: CompanyRequest,
    current: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Create a company and make the caller its admin."""
    if current.user is None:
        raise AuthenticationError("User not found in database")
    if not payload.name:
        raise ValidationError("Company name is required")

    fields = payload.model_dump(exclude_none=True, exclude={"name"})
    company = await companies.onboard_company(session, current.user, name=payload.name, **fields)
    return company.to_dict()


@router.get("/companies")
async def list_companies(
    current: CurrentUser = Depends(require_permission("all")),
    session: AsyncSession = Depends(get_session),
):
    return [c.to_dict() for c in await companies.list_companies(session)]


@router.get("/companies/{company_id}")
async def get_company(
    company_id: str,
    current: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    validate_tenant_access(company_id, current.company_id)
    company = await companies.get_company(session, company_id)
    if company is None:
        raise NotFoundError("Company not found")
    return company.to_dict()


@router.patch("/companies/{company_id}")
async def update_company(
    company_id: str,
    payload: CompanyRequest,
    current: CurrentUser = Depends(require_permission("write")),
    session: AsyncSession = Depends(get_session),
):
    validate_tenant_access(company_id, current.company_id)
    company = await companies.update_company(session, company_id, payload.model_dump(exclude_none=True))
    return company.to_dict()


# Users and roles


@router.get("/users")
async def list_users(
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    return [u.to_dict() for u in await users.list_company_users(session, company_id)]


@router.patch("/users/{appwrite_user_id}/role")
async def change_user_role(
    appwrite_user_id: str,
    payload: UserRoleRequest,
    current: CurrentUser = Depends(require_permission("all")),
    session: AsyncSession = Depends(get_session),
):
    target = await users.get_user_by_appwrite_id(session, appwrite_user_id)
    if target is None:
        raise NotFoundError("User not found")
    validate_tenant_access(target.company_id, current.company_id)
    if await roles.get_role(session, payload.role_id) is None:
        raise ValidationError("Role not found")

    user = await users.update_user_role(session, appwrite_user_id, payload.role_id)
    return user.to_dict()


@router.get("/roles")
async def list_roles(
    current: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return [r.to_dict() for r in await roles.list_roles(session)]


# Invitations


@router.post("/invitations", status_code=status.HTTP_201_CREATED)
async def create_invitation(
    payload: InviteRequest,
    current: CurrentUser = Depends(require_permission("all")),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    result = await invite_user(
        session,
        email=payload.email,
        role_name=payload.role,
        company_id=company_id,
        invited_by=current.appwrite_user_id,
    )
    return result.to_response()


@router.get("/invitations")
async def list_invitations(
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    rows = await invitations.list_company_invitations(session, company_id)
    return [
        {**row.invitation.to_dict(), "role_name": row.role_name, "inviter_name": row.inviter_name}
        for row in rows
    ]


@router.get("/invitations/token/{token}")
async def get_invitation(token: str, session: AsyncSession = Depends(get_session)):
    """Look up a pending invitation; used by the signup page before login."""
    invitation = await invitations.get_invitation_by_token(session, token)
    if invitation is None:
        raise NotFoundError("Invitation not found or expired")
    return {
        "email": invitation.email,
        "company_id": invitation.company_id,
        "role_id": invitation.role_id,
        "expires_at": invitation.expires_at.isoformat(),
    }


@router.patch("/invitations/{invitation_id}")
async def update_invitation_role(
    invitation_id: str,
    payload: InvitationRoleRequest,
    current: CurrentUser = Depends(require_permission("all")),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    invitation = await invitations.update_invitation_role(session, company_id, invitation_id, payload.role_id)
    return invitation.to_dict()


@router.delete("/invitations/{invitation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_invitation(
    invitation_id: str,
    current: CurrentUser = Depends(require_permission("all")),
    company_id: str = Depends(require_company),
    session: AsyncSession = Depends(get_session),
):
    await invitations.delete_invitation(session, company_id, invitation_id)


@router.post("/invitations/expire")
async def expire_invitations(
    current: CurrentUser = Depends(require_permission("all")),
    session: AsyncSession = Depends(get_session),
):
    return {"expired": await invitations.mark_expired_invitations(session)}
