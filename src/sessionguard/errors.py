"""Auth failure values and boundary exceptions.

Learn: Expected authentication outcomes (bad password, expired session,
reused token...) are *values*, not exceptions. Orchestrator operations
return either a typed result or an AuthFailure, and callers branch with
isinstance(). Exceptions are reserved for faults nobody can handle
locally: a store timeout, a dropped connection.

Only the HTTP boundary turns an AuthFailure into an exception
(AuthFailureError) so FastAPI can render it as {code, message}.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class AuthErrorKind(str, Enum):
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    TOKEN_REUSED = "TOKEN_REUSED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_INVALID = "TOKEN_INVALID"
    TOKEN_REVOKED = "TOKEN_REVOKED"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    EMAIL_EXISTS = "EMAIL_EXISTS"
    WEAK_PASSWORD = "WEAK_PASSWORD"
    INVALID_ROLE = "INVALID_ROLE"

    @property
    def code(self) -> str:
        """Stable wire code, e.g. AUTH_SESSION_EXPIRED."""
        return f"AUTH_{self.value}"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]

    @property
    def default_message(self) -> str:
        return _DEFAULT_MESSAGES[self]


_STATUS_CODES = {
    AuthErrorKind.INVALID_CREDENTIALS: 401,
    AuthErrorKind.SESSION_EXPIRED: 401,
    AuthErrorKind.TOKEN_REUSED: 401,
    AuthErrorKind.TOKEN_EXPIRED: 401,
    AuthErrorKind.TOKEN_INVALID: 401,
    AuthErrorKind.TOKEN_REVOKED: 401,
    AuthErrorKind.USER_NOT_FOUND: 404,
    AuthErrorKind.EMAIL_EXISTS: 400,
    AuthErrorKind.WEAK_PASSWORD: 400,
    AuthErrorKind.INVALID_ROLE: 400,
}

_DEFAULT_MESSAGES = {
    AuthErrorKind.INVALID_CREDENTIALS: "Invalid email or password",
    AuthErrorKind.SESSION_EXPIRED: "Session has expired or is invalid",
    AuthErrorKind.TOKEN_REUSED: "Security breach detected - all sessions revoked",
    AuthErrorKind.TOKEN_EXPIRED: "Access token has expired",
    AuthErrorKind.TOKEN_INVALID: "Access token is invalid",
    AuthErrorKind.TOKEN_REVOKED: "Access token has been revoked",
    AuthErrorKind.USER_NOT_FOUND: "User not found",
    AuthErrorKind.EMAIL_EXISTS: "Email already registered",
    AuthErrorKind.WEAK_PASSWORD: "Password is too short",
    AuthErrorKind.INVALID_ROLE: "Unknown role",
}


@dataclass(frozen=True)
class AuthFailure:
    """An expected, user-visible authentication failure."""

    kind: AuthErrorKind
    message: str = ""

    def __post_init__(self):
        if not self.message:
            object.__setattr__(self, "message", self.kind.default_message)

    @property
    def code(self) -> str:
        return self.kind.code

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


def fail(kind: AuthErrorKind, message: Optional[str] = None) -> AuthFailure:
    return AuthFailure(kind, message or "")


class AuthFailureError(Exception):
    """Raised at the HTTP boundary to render an AuthFailure."""

    def __init__(self, failure: AuthFailure):
        super().__init__(failure.message)
        self.failure = failure


class StoreTimeoutError(Exception):
    """A store call did not complete within the configured timeout."""
