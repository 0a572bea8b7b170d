"""Access-token blacklist — early revocation for stateless tokens.

Learn: Rows are keyed by SHA-256 of the token (never the token itself) and
live no longer than the token could possibly remain valid: the access
token lifetime from now, capped at the token's own exp when known.
cleanup() only reclaims storage; a late cleanup never changes answers
because is_blacklisted() ignores expired rows anyway.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from sessionguard.auth.tokens import hash_for_blacklist
from sessionguard.db.models import TokenBlacklist
from sessionguard.db.timeout import bounded


class TokenBlacklistStore:
    def __init__(
        self,
        db: AsyncSession,
        *,
        access_ttl_seconds: int = 15 * 60,
        timeout: float = 5.0,
    ):
        self.db = db
        self.access_ttl = timedelta(seconds=access_ttl_seconds)
        self.timeout = timeout

    async def _find(self, token_hash: str) -> Optional[TokenBlacklist]:
        result = await bounded(
            self.db.execute(
                select(TokenBlacklist).where(TokenBlacklist.token_hash == token_hash)
            ),
            self.timeout,
        )
        return result.scalars().first()

    async def add(
        self,
        token: str,
        user_id: uuid.UUID,
        reason: str,
        not_after: Optional[datetime] = None,
    ) -> TokenBlacklist:
        """Upsert a blacklist entry for this token."""
        token_hash = hash_for_blacklist(token)
        expires_at = datetime.now(timezone.utc) + self.access_ttl
        if not_after is not None and not_after < expires_at:
            expires_at = not_after

        entry = await self._find(token_hash)
        if entry is not None:
            entry.reason = reason
            entry.expires_at = expires_at
            await bounded(self.db.flush(), self.timeout)
            return entry

        entry = TokenBlacklist(
            token_hash=token_hash,
            user_id=user_id,
            reason=reason,
            expires_at=expires_at,
        )
        self.db.add(entry)
        await bounded(self.db.flush(), self.timeout)
        return entry

    async def is_blacklisted(self, token: str) -> bool:
        entry = await self._find(hash_for_blacklist(token))
        return entry is not None and entry.expires_at > datetime.now(timezone.utc)

    async def cleanup(self) -> int:
        """Delete expired entries. Returns how many were removed."""
        result = await bounded(
            self.db.execute(
                delete(TokenBlacklist).where(
                    TokenBlacklist.expires_at <= datetime.now(timezone.utc)
                )
            ),
            self.timeout,
        )
        return result.rowcount
