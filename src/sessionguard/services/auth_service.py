"""Auth orchestrator — register, login, refresh, logout, change password.

Learn: This is the only layer that decides what a client sees. Lower
layers answer yes/no (hasher, codec) or "found / not found" (stores);
here those answers become either a typed result or an AuthFailure, and
every security-relevant transition lands in the audit log.

Refresh is the protocol that matters most:

1. Malformed token                       → SESSION_EXPIRED
2. Selector matches a previous_selector  → token theft. Revoke ALL the
   user's sessions, audit TOKEN_REUSE_DETECTED (CRITICAL), TOKEN_REUSED
3. No live session / verifier mismatch   → SESSION_EXPIRED
4. Rotate with a conditional UPDATE (lost race → SESSION_EXPIRED)
5. Mint access token, audit TOKEN_REFRESH

Only one generation of previous_selector is kept. If an attacker uses a
stolen token *before* the legitimate client, it is the legitimate
client's next refresh that gets flagged as reuse. Either way the whole
session family is revoked.

Each public operation commits its own unit of work, including the
failure paths that write audit rows.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sessionguard.audit import types as events
from sessionguard.audit.store import AuditLogger
from sessionguard.auth.jwt import AccessTokenIssuer, AccessTokenPayload, TokenVerifyError
from sessionguard.auth.password import (
    equalize_timing_async,
    hash_password_async,
    verify_password_async,
)
from sessionguard.auth.tokens import generate_token_pair, parse_token
from sessionguard.config import Settings
from sessionguard.db.models import AuditSeverity, Role, User
from sessionguard.db.timeout import bounded
from sessionguard.errors import AuthErrorKind, AuthFailure, fail
from sessionguard.services.blacklist_service import TokenBlacklistStore
from sessionguard.services.session_service import SessionInfo, SessionStore
from sessionguard.services.user_service import UserStore, normalize_email

logger = structlog.get_logger()


# ═══════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════


@dataclass
class UserInfo:
    id: uuid.UUID
    email: str
    name: str
    role: str
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserInfo":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            created_at=user.created_at,
        )


@dataclass
class AuthTokens:
    access_token: str
    refresh_token: str
    expires_in: int
    session_id: uuid.UUID


@dataclass
class LoginResult:
    user: UserInfo
    access_token: str
    refresh_token: str
    expires_in: int
    session_id: uuid.UUID


# ═══════════════════════════════════════════════════════════
# Orchestrator
# ═══════════════════════════════════════════════════════════


class AuthService:
    """Public auth operations over one database session (one request)."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        issuer: Optional[AccessTokenIssuer] = None,
    ):
        self.db = db
        self.settings = settings
        self.issuer = issuer or AccessTokenIssuer(settings.jwt_config())
        timeout = settings.store_timeout_seconds
        self.users = UserStore(db, timeout=timeout)
        self.sessions = SessionStore(
            db,
            ttl_days=settings.refresh_token_ttl_days,
            max_sessions=settings.max_sessions_per_user,
            bcrypt_rounds=settings.bcrypt_rounds,
            timeout=timeout,
        )
        self.blacklist = TokenBlacklistStore(
            db,
            access_ttl_seconds=settings.access_token_ttl_seconds,
            timeout=timeout,
        )
        self.audit = AuditLogger(db, timeout=timeout)

    async def _commit(self) -> None:
        await bounded(self.db.commit(), self.settings.store_timeout_seconds)

    def _issue_access_token(self, user: User, session_id: uuid.UUID) -> str:
        return self.issuer.issue(user.id, user.email, user.role, session_id=session_id)

    def _weak_password(self, password: str) -> Optional[AuthFailure]:
        minimum = self.settings.min_password_length
        if len(password) < minimum:
            return fail(
                AuthErrorKind.WEAK_PASSWORD,
                f"Password must be at least {minimum} characters",
            )
        return None

    # ─── Register ─────────────────────────────────────────

    async def register(
        self,
        email: str,
        password: str,
        name: str,
        role: Union[Role, str] = Role.USER,
    ) -> Union[UserInfo, AuthFailure]:
        """Create a user account."""
        try:
            role = Role(role)
        except ValueError:
            return fail(AuthErrorKind.INVALID_ROLE)

        weak = self._weak_password(password)
        if weak:
            return weak

        if await self.users.get_by_email(email) is not None:
            return fail(AuthErrorKind.EMAIL_EXISTS)

        password_hash = await hash_password_async(password, self.settings.bcrypt_rounds)
        try:
            user = await self.users.create(email, password_hash, name, role)
            await self._commit()
        except IntegrityError:
            # Concurrent registration with the same email won the insert.
            await self.db.rollback()
            return fail(AuthErrorKind.EMAIL_EXISTS)

        logger.info("auth.registered", user_id=str(user.id), role=user.role)
        return UserInfo.from_user(user)

    # ─── Login ────────────────────────────────────────────

    async def login(
        self,
        email: str,
        password: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Union[LoginResult, AuthFailure]:
        """Email/password → access token + refresh token + session."""
        normalized = normalize_email(email)
        user = await self.users.get_by_email(normalized)

        if user is None:
            # Spend a bcrypt comparison anyway so timing doesn't reveal
            # whether the account exists.
            await equalize_timing_async(password, self.settings.bcrypt_rounds)
            await self.audit.log(
                events.LOGIN_FAILED,
                email=normalized,
                ip_address=ip_address,
                user_agent=user_agent,
                metadata={"reason": "user_not_found"},
                severity=AuditSeverity.WARNING,
            )
            await self._commit()
            return fail(AuthErrorKind.INVALID_CREDENTIALS)

        if not await verify_password_async(password, user.password_hash):
            await self.audit.log(
                events.LOGIN_FAILED,
                user_id=user.id,
                email=user.email,
                ip_address=ip_address,
                user_agent=user_agent,
                metadata={"reason": "invalid_password"},
                severity=AuditSeverity.WARNING,
            )
            await self._commit()
            return fail(AuthErrorKind.INVALID_CREDENTIALS)

        # Serialize concurrent logins for this user until commit.
        await self.users.lock(user.id)

        revoked = await self.sessions.enforce_limit(user.id)
        if revoked:
            await self.audit.log(
                events.SESSION_LIMIT_REACHED,
                user_id=user.id,
                email=user.email,
                ip_address=ip_address,
                user_agent=user_agent,
                metadata={
                    "revoked_count": len(revoked),
                    "revoked_session_ids": [str(sid) for sid in revoked],
                },
            )

        token_pair = generate_token_pair()
        session = await self.sessions.create(user.id, token_pair, user_agent, ip_address)

        trimmed = await self.sessions.trim_excess(user.id, keep_session_id=session.id)
        if trimmed:
            await self.audit.log(
                events.SESSION_LIMIT_REACHED,
                user_id=user.id,
                email=user.email,
                ip_address=ip_address,
                user_agent=user_agent,
                metadata={
                    "revoked_count": len(trimmed),
                    "revoked_session_ids": [str(sid) for sid in trimmed],
                    "concurrent_login": True,
                },
            )

        access_token = self._issue_access_token(user, session.id)

        await self.audit.log(
            events.LOGIN_SUCCESS,
            user_id=user.id,
            email=user.email,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata={"session_id": str(session.id)},
        )
        await self._commit()

        return LoginResult(
            user=UserInfo.from_user(user),
            access_token=access_token,
            refresh_token=token_pair.full_token,
            expires_in=self.issuer.ttl_seconds,
            session_id=session.id,
        )

    # ─── Refresh ──────────────────────────────────────────

    async def refresh(
        self,
        refresh_token: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Union[AuthTokens, AuthFailure]:
        """Rotate a refresh token, detecting replay of rotated tokens."""
        parsed = parse_token(refresh_token)
        if parsed is None:
            return fail(AuthErrorKind.SESSION_EXPIRED, "Invalid token format")

        reused = await self.sessions.find_by_previous_selector(parsed.selector)
        if reused is not None:
            owner_id = reused.user_id
            reused_session_id = reused.id
            revoked_count = await self.sessions.delete_all_for_user(owner_id)
            await self.audit.log(
                events.TOKEN_REUSE_DETECTED,
                user_id=owner_id,
                ip_address=ip_address,
                user_agent=user_agent,
                metadata={
                    "session_id": str(reused_session_id),
                    "revoked_count": revoked_count,
                },
                severity=AuditSeverity.CRITICAL,
            )
            await self._commit()
            return fail(AuthErrorKind.TOKEN_REUSED)

        session = await self.sessions.find_by_token(refresh_token)
        if session is None:
            return fail(AuthErrorKind.SESSION_EXPIRED)

        user = await self.users.get(session.user_id)
        if user is None:
            return fail(AuthErrorKind.SESSION_EXPIRED)

        new_pair = generate_token_pair()
        if await self.sessions.rotate(session, new_pair) is None:
            # Another refresh of this same token committed first.
            await self.db.rollback()
            return fail(AuthErrorKind.SESSION_EXPIRED)

        access_token = self._issue_access_token(user, session.id)

        await self.audit.log(
            events.TOKEN_REFRESH,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata={"session_id": str(session.id)},
        )
        await self._commit()

        return AuthTokens(
            access_token=access_token,
            refresh_token=new_pair.full_token,
            expires_in=self.issuer.ttl_seconds,
            session_id=session.id,
        )

    # ─── Logout ───────────────────────────────────────────

    async def logout(
        self,
        session_id: uuid.UUID,
        access_token: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> None:
        """End one session and revoke the presented access token.

        The access token is blacklisted even when its session is already
        gone (revoked, evicted, reuse-triggered wipe), since the token itself
        stays valid until exp. When user_id is given, a session owned by
        someone else is treated as missing.
        """
        session = await self.sessions.get(session_id)
        if session is not None and user_id is not None and session.user_id != user_id:
            session = None

        verified = self.issuer.verify(access_token) if access_token else None
        payload = verified if isinstance(verified, AccessTokenPayload) else None

        owner_id = session.user_id if session is not None else user_id
        if owner_id is None and payload is not None:
            owner_id = payload.user_id

        if access_token and owner_id is not None:
            await self.blacklist.add(
                access_token,
                owner_id,
                "logout",
                not_after=payload.expires_at if payload else None,
            )

        if session is None:
            await self._commit()
            return

        user_id = session.user_id
        user = await self.users.get(user_id)

        await self.sessions.delete(session_id)
        await self.audit.log(
            events.LOGOUT,
            user_id=user_id,
            email=user.email if user else None,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata={"session_id": str(session_id)},
        )
        await self._commit()

    # ─── Change password ──────────────────────────────────

    async def change_password(
        self,
        user_id: uuid.UUID,
        current_password: str,
        new_password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Union[AuthTokens, AuthFailure]:
        """Re-verify, set a new password, and log out everywhere else."""
        user = await self.users.get(user_id)
        if user is None:
            return fail(AuthErrorKind.USER_NOT_FOUND)

        if not await verify_password_async(current_password, user.password_hash):
            await self.audit.log(
                events.LOGIN_FAILED,
                user_id=user.id,
                email=user.email,
                ip_address=ip_address,
                user_agent=user_agent,
                metadata={"reason": "change_password_invalid_current"},
                severity=AuditSeverity.WARNING,
            )
            await self._commit()
            return fail(
                AuthErrorKind.INVALID_CREDENTIALS, "Current password is incorrect"
            )

        weak = self._weak_password(new_password)
        if weak:
            return weak

        password_hash = await hash_password_async(new_password, self.settings.bcrypt_rounds)
        await self.users.set_password_hash(user, password_hash)

        revoked_count = await self.sessions.delete_all_for_user(user.id)

        token_pair = generate_token_pair()
        session = await self.sessions.create(user.id, token_pair, user_agent, ip_address)
        access_token = self._issue_access_token(user, session.id)

        await self.audit.log(
            events.PASSWORD_CHANGE,
            user_id=user.id,
            email=user.email,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata={"revoked_count": revoked_count},
            severity=AuditSeverity.WARNING,
        )
        await self._commit()

        return AuthTokens(
            access_token=access_token,
            refresh_token=token_pair.full_token,
            expires_in=self.issuer.ttl_seconds,
            session_id=session.id,
        )

    # ─── Sessions ─────────────────────────────────────────

    async def list_sessions(
        self,
        user_id: uuid.UUID,
        current_session_id: Optional[uuid.UUID] = None,
    ) -> list[SessionInfo]:
        return await self.sessions.list_for_user(user_id, current_session_id)

    async def revoke_all_sessions(
        self,
        user_id: uuid.UUID,
        except_session_id: Optional[uuid.UUID] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> int:
        """Revoke every session of a user, optionally keeping one."""
        count = await self.sessions.delete_all_for_user(user_id, except_session_id)
        if count:
            await self.audit.log(
                events.SESSION_REVOKED,
                user_id=user_id,
                ip_address=ip_address,
                user_agent=user_agent,
                metadata={
                    "revoked_count": count,
                    "kept_session_id": str(except_session_id) if except_session_id else None,
                },
            )
        await self._commit()
        return count

    async def revoke_session(
        self,
        user_id: uuid.UUID,
        session_id: uuid.UUID,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        """Revoke one of the user's own sessions. False if not theirs / gone."""
        deleted = await self.sessions.delete_for_user(user_id, session_id)
        if deleted:
            await self.audit.log(
                events.SESSION_REVOKED,
                user_id=user_id,
                ip_address=ip_address,
                user_agent=user_agent,
                metadata={"session_id": str(session_id), "revoked_count": 1},
            )
        await self._commit()
        return deleted

    # ─── Access tokens ────────────────────────────────────

    def verify_access_token(self, token: str) -> Union[AccessTokenPayload, TokenVerifyError]:
        return self.issuer.verify(token)

    async def authenticate(self, token: str) -> Union[AccessTokenPayload, AuthFailure]:
        """Verify an access token and make sure it hasn't been revoked."""
        verified = self.issuer.verify(token)
        if verified is TokenVerifyError.EXPIRED:
            return fail(AuthErrorKind.TOKEN_EXPIRED)
        if verified is TokenVerifyError.INVALID:
            return fail(AuthErrorKind.TOKEN_INVALID)
        if await self.blacklist.is_blacklisted(token):
            return fail(AuthErrorKind.TOKEN_REVOKED)
        return verified

    async def cleanup_blacklist(self) -> int:
        count = await self.blacklist.cleanup()
        await self._commit()
        if count:
            logger.info("blacklist.cleaned", removed=count)
        return count

    async def cleanup_expired_sessions(self) -> int:
        count = await self.sessions.purge_expired()
        await self._commit()
        if count:
            logger.info("session.expired_purged", removed=count)
        return count

    # ─── Users ────────────────────────────────────────────

    async def get_user(self, user_id: uuid.UUID) -> Union[UserInfo, AuthFailure]:
        user = await self.users.get(user_id)
        if user is None:
            return fail(AuthErrorKind.USER_NOT_FOUND)
        return UserInfo.from_user(user)

    async def record_rate_limit_exceeded(
        self,
        ip_address: Optional[str],
        user_agent: Optional[str],
        path: str,
        email: Optional[str] = None,
    ) -> None:
        """Audit hook for external rate-limit middleware."""
        await self.audit.log(
            events.RATE_LIMIT_EXCEEDED,
            email=normalize_email(email) if email else None,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata={"path": path},
            severity=AuditSeverity.WARNING,
        )
        await self._commit()
