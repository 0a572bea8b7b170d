"""Session store — refresh-token grants and the per-user session cap.

Learn: A Session row IS the refresh token's validity. If the row is gone,
expired, or its verifier hash doesn't match, the token is dead. All three
cases look identical to callers (None) so nothing leaks to the client
about *why* a token failed.

Two operations need care under concurrency:

- rotate() is a compare-and-swap: the UPDATE only matches if the row still
  carries the selector AND verifier hash we just verified. Two concurrent
  refreshes of the same token cannot both win; the loser sees rowcount 0.
- enforce_limit() + trim_excess() bracket session creation: evict the
  oldest sessions in one batch before inserting, then re-check after the
  insert in case a concurrent login slipped in between.

The store only flushes; the orchestrator owns the transaction and commits.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sessionguard.auth.password import (
    DEFAULT_ROUNDS,
    hash_password_async,
    verify_password_async,
)
from sessionguard.auth.tokens import TokenPair, parse_token
from sessionguard.db.models import Session
from sessionguard.db.timeout import bounded

logger = structlog.get_logger()

DEFAULT_TTL_DAYS = 7
MAX_SESSIONS_PER_USER = 5


@dataclass
class SessionInfo:
    """Client-facing view of a session (no token material)."""
    id: uuid.UUID
    user_agent: Optional[str]
    ip_address: Optional[str]
    created_at: datetime
    expires_at: datetime
    is_current: bool


class SessionStore:
    """Create, look up, rotate and revoke refresh-token sessions."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        ttl_days: int = DEFAULT_TTL_DAYS,
        max_sessions: int = MAX_SESSIONS_PER_USER,
        bcrypt_rounds: int = DEFAULT_ROUNDS,
        timeout: float = 5.0,
    ):
        self.db = db
        self.ttl = timedelta(days=ttl_days)
        self.max_sessions = max_sessions
        self.bcrypt_rounds = bcrypt_rounds
        self.timeout = timeout

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    async def _execute(self, stmt):
        return await bounded(self.db.execute(stmt), self.timeout)

    # ─── Create / lookup ──────────────────────────────────

    async def create(
        self,
        user_id: uuid.UUID,
        token_pair: TokenPair,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Session:
        """Persist a new session holding the hash of the pair's verifier."""
        verifier_hash = await hash_password_async(token_pair.verifier, self.bcrypt_rounds)
        now = self._now()
        session = Session(
            user_id=user_id,
            token_selector=token_pair.selector,
            token_verifier_hash=verifier_hash,
            user_agent=user_agent,
            ip_address=ip_address,
            created_at=now,
            expires_at=now + self.ttl,
        )
        self.db.add(session)
        await bounded(self.db.flush(), self.timeout)
        return session

    async def get(self, session_id: uuid.UUID) -> Optional[Session]:
        return await bounded(self.db.get(Session, session_id), self.timeout)

    async def find_by_token(self, full_token: str) -> Optional[Session]:
        """Resolve a refresh token to its live session, or None.

        One indexed lookup by selector, then one bcrypt comparison.
        """
        parsed = parse_token(full_token)
        if parsed is None:
            return None

        result = await self._execute(
            select(Session).where(Session.token_selector == parsed.selector)
        )
        session = result.scalars().first()
        if session is None:
            return None
        if session.expires_at <= self._now():
            return None
        if not await verify_password_async(parsed.verifier, session.token_verifier_hash):
            return None
        return session

    async def find_by_previous_selector(self, selector: str) -> Optional[Session]:
        """Find a live session whose *previous* selector is this one.

        A hit means a token that was already rotated away is being presented
        again.
        """
        result = await self._execute(
            select(Session)
            .where(
                Session.previous_selector == selector,
                Session.expires_at > self._now(),
            )
            .limit(1)
        )
        return result.scalars().first()

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        current_session_id: Optional[uuid.UUID] = None,
    ) -> list[SessionInfo]:
        """Live sessions, oldest first, flagging the caller's own."""
        result = await self._execute(
            select(Session)
            .where(Session.user_id == user_id, Session.expires_at > self._now())
            .order_by(Session.created_at.asc(), Session.id.asc())
        )
        return [
            SessionInfo(
                id=s.id,
                user_agent=s.user_agent,
                ip_address=s.ip_address,
                created_at=s.created_at,
                expires_at=s.expires_at,
                is_current=s.id == current_session_id,
            )
            for s in result.scalars().all()
        ]

    async def count_live(self, user_id: uuid.UUID) -> int:
        result = await self._execute(
            select(func.count())
            .select_from(Session)
            .where(Session.user_id == user_id, Session.expires_at > self._now())
        )
        return int(result.scalar_one())

    # ─── Rotation ─────────────────────────────────────────

    async def rotate(self, session: Session, new_pair: TokenPair) -> Optional[datetime]:
        """Swap in a new selector/verifier in one conditional UPDATE.

        Returns the new expiry, or None when the row no longer carries the
        selector/verifier we verified (a concurrent refresh got there first).
        """
        old_selector = session.token_selector
        old_verifier_hash = session.token_verifier_hash
        new_verifier_hash = await hash_password_async(new_pair.verifier, self.bcrypt_rounds)
        now = self._now()
        expires_at = now + self.ttl

        result = await self._execute(
            update(Session)
            .where(
                Session.id == session.id,
                Session.token_selector == old_selector,
                Session.token_verifier_hash == old_verifier_hash,
            )
            .values(
                token_selector=new_pair.selector,
                token_verifier_hash=new_verifier_hash,
                previous_selector=old_selector,
                expires_at=expires_at,
                rotated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("session.rotation_conflict", session_id=str(session.id))
            return None

        await bounded(self.db.refresh(session), self.timeout)
        return expires_at

    # ─── Deletion ─────────────────────────────────────────

    async def delete(self, session_id: uuid.UUID) -> bool:
        result = await self._execute(
            delete(Session)
            .where(Session.id == session_id)
        )
        return result.rowcount > 0

    async def delete_for_user(self, user_id: uuid.UUID, session_id: uuid.UUID) -> bool:
        """Delete one session, but only if it belongs to this user."""
        result = await self._execute(
            delete(Session)
            .where(Session.id == session_id, Session.user_id == user_id)
        )
        return result.rowcount > 0

    async def delete_all_for_user(
        self,
        user_id: uuid.UUID,
        except_session_id: Optional[uuid.UUID] = None,
    ) -> int:
        stmt = delete(Session).where(Session.user_id == user_id)
        if except_session_id is not None:
            stmt = stmt.where(Session.id != except_session_id)
        result = await self._execute(stmt)
        return result.rowcount

    async def purge_expired(self) -> int:
        """Delete expired session rows (storage reclamation only)."""
        result = await self._execute(
            delete(Session)
            .where(Session.expires_at <= self._now())
        )
        return result.rowcount

    # ─── Session cap ──────────────────────────────────────

    async def _oldest_beyond(
        self,
        user_id: uuid.UUID,
        keep: int,
        exclude: Optional[uuid.UUID] = None,
    ) -> list[uuid.UUID]:
        """Ids of the oldest live sessions that push the count above `keep`."""
        stmt = (
            select(Session.id)
            .where(Session.user_id == user_id, Session.expires_at > self._now())
            .order_by(Session.created_at.asc(), Session.id.asc())
        )
        if exclude is not None:
            stmt = stmt.where(Session.id != exclude)
            keep -= 1
        ids = list((await self._execute(stmt)).scalars().all())
        excess = len(ids) - keep
        return ids[:excess] if excess > 0 else []

    async def _delete_batch(self, ids: list[uuid.UUID]) -> None:
        if ids:
            await self._execute(
                delete(Session)
                .where(Session.id.in_(ids))
            )

    async def enforce_limit(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        """Make room for one more session.

        If the user already has max_sessions or more live sessions, the
        oldest are deleted in a single batch until max_sessions - 1 remain.
        Returns the revoked ids, oldest first.
        """
        revoked = await self._oldest_beyond(user_id, keep=self.max_sessions - 1)
        await self._delete_batch(revoked)
        if revoked:
            logger.info(
                "session.limit_enforced",
                user_id=str(user_id),
                revoked=len(revoked),
            )
        return revoked

    async def trim_excess(self, user_id: uuid.UUID, keep_session_id: uuid.UUID) -> list[uuid.UUID]:
        """Post-insert re-check: never leave more than max_sessions live.

        Only does anything when a concurrent login inserted between our
        enforce_limit() and create(). The just-created session is kept.
        """
        revoked = await self._oldest_beyond(
            user_id, keep=self.max_sessions, exclude=keep_session_id
        )
        await self._delete_batch(revoked)
        if revoked:
            logger.warning(
                "session.limit_race_trimmed",
                user_id=str(user_id),
                revoked=len(revoked),
            )
        return revoked
