"""Signup, login and account endpoints."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from bmo import auth
from bmo.auth import CurrentUser, get_current_user
from bmo.db import get_session
from bmo.store.invitations import accept_invitation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


class SignupRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=8)
    name: str = Field(min_length=1, max_length=255)


class LoginRequest(BaseModel):
    email: str
    password: str


class RecoveryRequest(BaseModel):
    email: str


class UpdateAccountRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    email: str | None = None
    password: str | None = Field(default=None, min_length=8)


class AcceptInvitationRequest(BaseModel):
    token: str
    name: str = Field(min_length=1, max_length=255)


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(payload: SignupRequest, session: AsyncSession = Depends(get_session)):
    result = await auth.signup(session, email=payload.email, password=payload.password, name=payload.name)
    return result.to_response()


@router.post("/login")
async def login(payload: LoginRequest, session: AsyncSession = Depends(get_session)):
    result = await auth.login(session, email=payload.email, password=payload.password)
    return result.to_response()


@router.post("/logout")
async def logout(current: CurrentUser = Depends(get_current_user)):
    await auth.logout(current)
    return {"success": True}


@router.get("/me")
async def me(current: CurrentUser = Depends(get_current_user)):
    """The caller with role and company details."""
    return current.to_dict()


@router.post("/recovery")
async def password_recovery(payload: RecoveryRequest):
    await auth.request_password_recovery(payload.email)
    return {"success": True, "message": "Password recovery email sent"}


@router.patch("/me")
async def update_me(
    payload: UpdateAccountRequest,
    current: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    await auth.update_account(
        session,
        current,
        name=payload.name,
        email=payload.email,
        password=payload.password,
    )
    return {"success": True}


@router.post("/accept-invitation")
async def accept(
    payload: AcceptInvitationRequest,
    current: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Join the inviting company with the invited role."""
    user = await accept_invitation(session, payload.token, current.appwrite_user_id, payload.name)
    return {"success": True, "user": user.to_dict()}
