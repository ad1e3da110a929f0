"""Authentication on top of Appwrite accounts.

Appwrite owns credentials and sessions. After a successful signup or login
the user is mirrored into ``users`` and the API issues its own short-lived
JWT access token carrying the Appwrite user id and session id.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .appwrite import AppwriteClient, get_appwrite_client
from .config import settings
from .db import get_session
from .errors import AuthenticationError, TenantAccessError, ValidationError
from .store.users import (
    get_user_with_details,
    record_login,
    update_user_email,
    update_user_name,
    upsert_user,
)
from .tenancy import RoleFlags, ensure_permission

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


@dataclass
class TokenClaims:
    appwrite_user_id: str
    email: str
    session_id: str | None


def create_access_token(appwrite_user_id: str, email: str, session_id: str | None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": appwrite_user_id,
        "email": email,
        "session_id": session_id,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(minutes=settings.auth.access_token_ttl_minutes),
    }
    return jwt.encode(payload, settings.auth.jwt_secret, algorithm=settings.auth.jwt_algorithm)


def decode_token(token: str) -> TokenClaims:
    """Validate an access token.

    Raises:
        AuthenticationError: If the token is expired, malformed or not an access token
    """
    try:
        payload = jwt.decode(token, settings.auth.jwt_secret, algorithms=[settings.auth.jwt_algorithm])
    except jwt.PyJWTError as e:
        raise AuthenticationError("Invalid or expired token") from e

    if payload.get("type") != "access" or not payload.get("sub"):
        raise AuthenticationError("Invalid or expired token")

    return TokenClaims(
        appwrite_user_id=payload["sub"],
        email=payload.get("email", ""),
        session_id=payload.get("session_id"),
    )


@dataclass
class CurrentUser:
    """The authenticated caller with its mirrored user, role and company."""
    claims: TokenClaims
    user: models.User | None
    role: models.Role | None
    company: models.Company | None

    @property
    def appwrite_user_id(self) -> str:
        return self.claims.appwrite_user_id

    @property
    def user_id(self) -> str | None:
        return self.user.id if self.user else None

    @property
    def company_id(self) -> str | None:
        return self.user.company_id if self.user else None

    @property
    def permissions(self) -> dict[str, Any]:
        return (self.role.permissions or {}) if self.role else {}

    @property
    def flags(self) -> RoleFlags:
        return RoleFlags(self.role.name if self.role else None)

    def to_dict(self) -> dict[str, Any]:
        user = self.user
        return {
            "id": user.id if user else None,
            "appwrite_user_id": self.appwrite_user_id,
            "email": user.email if user else self.claims.email,
            "name": user.name if user else None,
            "is_active": user.is_active if user else None,
            "last_login": user.last_login.isoformat() if user and user.last_login else None,
            "role": {
                "id": self.role.id,
                "name": self.role.name,
                "permissions": self.role.permissions,
            } if self.role else None,
            "company": {
                "id": self.company.id,
                "name": self.company.name,
                "currency_code": self.company.currency_code,
            } if self.company else None,
            "is_admin": self.flags.is_admin,
            "is_auditor": self.flags.is_auditor,
            "is_finance_team": self.flags.is_finance_team,
        }


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    session: AsyncSession = Depends(get_session),
) -> CurrentUser:
    """FastAPI dependency resolving the bearer token to a CurrentUser."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Not authenticated")
    claims = decode_token(credentials.credentials)

    details = await get_user_with_details(session, claims.appwrite_user_id)
    if details is None:
        return CurrentUser(claims=claims, user=None, role=None, company=None)
    if not details.user.is_active:
        raise AuthenticationError("User is inactive")
    return CurrentUser(claims=claims, user=details.user, role=details.role, company=details.company)


async def require_company(current: CurrentUser = Depends(get_current_user)) -> str:
    """FastAPI dependency returning the caller's company id."""
    if not current.company_id:
        raise TenantAccessError("User is not assigned to a company")
    return current.company_id


def require_permission(key: str):
    """Build a dependency that requires ``key`` in the caller's role.

    Example:
        @router.post("/", dependencies=[Depends(require_permission("write"))])
    """

    async def dependency(current: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        ensure_permission(current.permissions, key)
        return current

    return dependency


# Account operations


@dataclass
class AuthResult:
    access_token: str
    user: models.User
    session_id: str

    def to_response(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "token_type": "bearer",
            "user": {
                "id": self.user.id,
                "appwrite_user_id": self.user.appwrite_user_id,
                "email": self.user.email,
                "name": self.user.name,
                "company_id": self.user.company_id,
                "role_id": self.user.role_id,
            },
        }


async def _start_session(
    session: AsyncSession,
    appwrite: AppwriteClient,
    email: str,
    password: str,
    name: str | None = None,
) -> AuthResult:
    account_session = await appwrite.create_email_session(email, password)
    appwrite_user_id = account_session["userId"]
    if name is None:
        account = await appwrite.get_user(appwrite_user_id)
        name = account.get("name") or email.split("@")[0]

    user = await upsert_user(session, appwrite_user_id, email, name)
    await record_login(session, user)
    token = create_access_token(appwrite_user_id, email, account_session["$id"])
    return AuthResult(access_token=token, user=user, session_id=account_session["$id"])


async def signup(
    session: AsyncSession,
    *,
    email: str,
    password: str,
    name: str,
    appwrite: AppwriteClient | None = None,
) -> AuthResult:
    if not email or not password or not name:
        raise ValidationError("Email, password and name are required")
    appwrite = appwrite or get_appwrite_client()

    await appwrite.create_user(email, password=password, name=name)
    result = await _start_session(session, appwrite, email, password, name)
    logger.info(f"Signed up user {result.user.appwrite_user_id}", extra={"user_id": result.user.id})
    return result


async def login(
    session: AsyncSession,
    *,
    email: str,
    password: str,
    appwrite: AppwriteClient | None = None,
) -> AuthResult:
    if not email or not password:
        raise ValidationError("Email and password are required")
    appwrite = appwrite or get_appwrite_client()

    result = await _start_session(session, appwrite, email, password)
    logger.info(f"User {result.user.appwrite_user_id} logged in", extra={"user_id": result.user.id})
    return result


async def logout(current: CurrentUser, appwrite: AppwriteClient | None = None) -> None:
    if not current.claims.session_id:
        return
    appwrite = appwrite or get_appwrite_client()
    await appwrite.delete_session(current.appwrite_user_id, current.claims.session_id)
    logger.info(f"User {current.appwrite_user_id} logged out")


async def request_password_recovery(email: str, appwrite: AppwriteClient | None = None) -> None:
    if not email:
        raise ValidationError("Email is required")
    appwrite = appwrite or get_appwrite_client()
    await appwrite.create_recovery(email, settings.appwrite.recovery_url)


async def update_account(
    session: AsyncSession,
    current: CurrentUser,
    *,
    name: str | None = None,
    email: str | None = None,
    password: str | None = None,
    appwrite: AppwriteClient | None = None,
) -> None:
    """Update name, email and/or password in Appwrite; name and email are mirrored locally."""
    if not (name or email or password):
        raise ValidationError("No fields to update")
    appwrite = appwrite or get_appwrite_client()
    user_id = current.appwrite_user_id

    if name:
        await appwrite.update_name(user_id, name)
        if current.user is not None:
            await update_user_name(session, user_id, name)
    if email:
        await appwrite.update_email(user_id, email)
        if current.user is not None:
            await update_user_email(session, user_id, email)
    if password:
        await appwrite.update_password(user_id, password)
