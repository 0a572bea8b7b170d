"""Auth API — registration, login, token refresh, logout, sessions.

Learn: Routes are thin. Each one calls a single AuthService operation and
either returns the typed result or raises AuthFailureError, which the
app-level handler renders as {"code", "message"} with the right status:
- POST /auth/register          → create a user account
- POST /auth/login             → email/password → access + refresh token
- POST /auth/refresh           → rotate refresh token
- POST /auth/logout            → end this session, revoke this access token
- POST /auth/change-password   → new password, every other session revoked
- GET  /auth/me                → current user info
- GET  /auth/sessions          → live sessions (oldest first)
- DELETE /auth/sessions/:id    → revoke one of my sessions
- POST /auth/sessions/revoke-all → revoke all my sessions except this one
"""

import uuid
from datetime import datetime
from typing import Optional, TypeVar, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from sessionguard.auth.dependencies import (
    ClientInfo,
    CurrentIdentity,
    get_auth_service,
    get_client_info,
    get_current_user,
)
from sessionguard.db.models import Role
from sessionguard.errors import AuthErrorKind, AuthFailure, AuthFailureError, fail
from sessionguard.services.auth_service import AuthService

router = APIRouter(prefix="/auth")

T = TypeVar("T")


def _unwrap(result: Union[T, AuthFailure]) -> T:
    if isinstance(result, AuthFailure):
        raise AuthFailureError(result)
    return result


# ─── Schemas ─────────────────────────────────────────────


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    name: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=255)
    role: Role = Role.USER


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=1, max_length=255)


class UserRead(BaseModel):
    id: uuid.UUID
    email: str
    name: str
    role: str
    created_at: datetime

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    session_id: uuid.UUID

    model_config = {"from_attributes": True}


class LoginResponse(TokenResponse):
    user: UserRead


class SessionRead(BaseModel):
    id: uuid.UUID
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: datetime
    expires_at: datetime
    is_current: bool

    model_config = {"from_attributes": True}


# ─── Register / login ────────────────────────────────────


@router.post("/register", response_model=UserRead, status_code=201)
async def register(body: RegisterRequest, auth: AuthService = Depends(get_auth_service)):
    """Create a new user account."""
    return _unwrap(await auth.register(body.email, body.password, body.name, body.role))


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    auth: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
):
    """Login with email and password → access + refresh tokens."""
    return _unwrap(
        await auth.login(body.email, body.password, client.user_agent, client.ip_address)
    )


# ─── Refresh ────────────────────────────────────────────


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    body: RefreshRequest,
    auth: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
):
    """Exchange a refresh token for a new access + refresh token pair."""
    return _unwrap(
        await auth.refresh(body.refresh_token, client.ip_address, client.user_agent)
    )


# ─── Authenticated routes ───────────────────────────────


@router.post("/logout")
async def logout(
    identity: CurrentIdentity = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
):
    """End the current session and blacklist the access token used."""
    if identity.session_id is None:
        raise AuthFailureError(fail(AuthErrorKind.TOKEN_INVALID))
    await auth.logout(
        identity.session_id,
        identity.access_token,
        client.ip_address,
        client.user_agent,
        user_id=identity.user_id,
    )
    return {"logged_out": True}


@router.post("/change-password", response_model=TokenResponse)
async def change_password(
    body: ChangePasswordRequest,
    identity: CurrentIdentity = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
):
    """Change password. Every existing session is revoked; a fresh one is returned."""
    return _unwrap(
        await auth.change_password(
            identity.user_id,
            body.current_password,
            body.new_password,
            client.ip_address,
            client.user_agent,
        )
    )


@router.get("/me", response_model=UserRead)
async def get_me(
    identity: CurrentIdentity = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    """Get the current authenticated user's info."""
    return _unwrap(await auth.get_user(identity.user_id))


@router.get("/sessions", response_model=list[SessionRead])
async def list_sessions(
    identity: CurrentIdentity = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    """List my live sessions, oldest first."""
    return await auth.list_sessions(identity.user_id, identity.session_id)


@router.delete("/sessions/{session_id}")
async def revoke_session(
    session_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
):
    """Revoke one of my sessions (e.g. a lost device)."""
    revoked = await auth.revoke_session(
        identity.user_id, session_id, client.ip_address, client.user_agent
    )
    if not revoked:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"revoked": True}


@router.post("/sessions/revoke-all")
async def revoke_all_sessions(
    identity: CurrentIdentity = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
):
    """Sign out everywhere else. The current session survives."""
    count = await auth.revoke_all_sessions(
        identity.user_id,
        except_session_id=identity.session_id,
        ip_address=client.ip_address,
        user_agent=client.user_agent,
    )
    return {"revoked": count}
