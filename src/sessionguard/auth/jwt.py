"""Access token issuance and verification.

Learn: Access tokens are short-lived (15 min), stateless HS256 JWTs with
the claims sub, email, role, iss, iat, exp. Nothing is stored when one is
issued; early revocation goes through the blacklist instead.

verify() never raises. It returns either the decoded payload or a
TokenVerifyError telling the caller *why*: EXPIRED means "go refresh",
INVALID means "reject outright".
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Union

import jwt

from sessionguard.config import JWTConfig

REQUIRED_CLAIMS = ["sub", "email", "role", "iss", "iat", "exp"]


class TokenVerifyError(str, Enum):
    EXPIRED = "EXPIRED"
    INVALID = "INVALID"


@dataclass(frozen=True)
class AccessTokenPayload:
    sub: str
    email: str
    role: str
    iss: str
    iat: int
    exp: int
    sid: Optional[str] = None

    @property
    def user_id(self) -> uuid.UUID:
        return uuid.UUID(self.sub)

    @property
    def session_id(self) -> Optional[uuid.UUID]:
        return uuid.UUID(self.sid) if self.sid else None

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)


class AccessTokenIssuer:
    """Signs and verifies access tokens with one explicit JWTConfig."""

    def __init__(self, config: JWTConfig):
        self.config = config

    @property
    def ttl_seconds(self) -> int:
        return self.config.access_ttl_seconds

    def issue(
        self,
        user_id: uuid.UUID,
        email: str,
        role: str,
        session_id: Optional[uuid.UUID] = None,
    ) -> str:
        """Create a signed access token for a user."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "email": email,
            "role": role,
            "iss": self.config.issuer,
            "iat": now,
            "exp": now + timedelta(seconds=self.config.access_ttl_seconds),
        }
        if session_id is not None:
            payload["sid"] = str(session_id)
        return jwt.encode(payload, self.config.secret, algorithm=self.config.algorithm)

    def _decode(self, token: str, verify_exp: bool) -> dict:
        return jwt.decode(
            token,
            self.config.secret,
            algorithms=[self.config.algorithm],
            issuer=self.config.issuer,
            options={"require": REQUIRED_CLAIMS, "verify_exp": verify_exp},
        )

    def verify(self, token: str) -> Union[AccessTokenPayload, TokenVerifyError]:
        """Check signature, issuer and claims first, expiry last.

        A forged or foreign token is INVALID even when it is also expired;
        EXPIRED is only reported for a token this issuer really signed.
        """
        try:
            claims = self._decode(token, verify_exp=False)
        except jwt.InvalidTokenError:
            return TokenVerifyError.INVALID

        try:
            self._decode(token, verify_exp=True)
        except jwt.ExpiredSignatureError:
            return TokenVerifyError.EXPIRED
        except jwt.InvalidTokenError:
            return TokenVerifyError.INVALID

        try:
            uuid.UUID(str(claims["sub"]))
            sid = claims.get("sid")
            if sid is not None:
                sid = str(uuid.UUID(str(sid)))
            return AccessTokenPayload(
                sub=str(claims["sub"]),
                email=str(claims["email"]),
                role=str(claims["role"]),
                iss=str(claims["iss"]),
                iat=int(claims["iat"]),
                exp=int(claims["exp"]),
                sid=sid,
            )
        except (ValueError, TypeError):
            return TokenVerifyError.INVALID
