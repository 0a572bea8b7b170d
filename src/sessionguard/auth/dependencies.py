"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to build the
per-request AuthService and to resolve the bearer access token into a
CurrentIdentity. FastAPI caches dependencies per request, so the route
and get_current_user share one AuthService (and one DB session).

Revoked (blacklisted) tokens are rejected here, not just expired or
forged ones.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from sessionguard.config import Settings
from sessionguard.db.engine import get_db
from sessionguard.errors import AuthErrorKind, AuthFailure, AuthFailureError, fail
from sessionguard.services.auth_service import AuthService


@dataclass
class CurrentIdentity:
    """The authenticated caller, as proven by a valid access token."""

    user_id: uuid.UUID
    email: str
    role: str
    session_id: Optional[uuid.UUID]
    access_token: str


@dataclass
class ClientInfo:
    ip_address: Optional[str]
    user_agent: Optional[str]


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


async def get_auth_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AuthService:
    return AuthService(db, request.app.state.settings, request.app.state.token_issuer)


async def get_current_user(
    authorization: Optional[str] = Header(None),
    auth: AuthService = Depends(get_auth_service),
) -> CurrentIdentity:
    """Require a valid, non-revoked bearer access token (401 otherwise)."""
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthFailureError(
            fail(AuthErrorKind.TOKEN_INVALID, "Authentication required")
        )

    token = authorization[7:]
    result = await auth.authenticate(token)
    if isinstance(result, AuthFailure):
        raise AuthFailureError(result)

    return CurrentIdentity(
        user_id=result.user_id,
        email=result.email,
        role=result.role,
        session_id=result.session_id,
        access_token=token,
    )
