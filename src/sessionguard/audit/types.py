"""Audit event type constants.

Learn: Centralizing event types as constants prevents typos and makes it
easy to discover everything the security log can contain. The values are
what external monitoring filters on, so they never change.
"""

LOGIN_SUCCESS = "LOGIN_SUCCESS"
LOGIN_FAILED = "LOGIN_FAILED"
LOGOUT = "LOGOUT"
TOKEN_REFRESH = "TOKEN_REFRESH"
PASSWORD_CHANGE = "PASSWORD_CHANGE"
SESSION_REVOKED = "SESSION_REVOKED"
TOKEN_REUSE_DETECTED = "TOKEN_REUSE_DETECTED"
RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
SESSION_LIMIT_REACHED = "SESSION_LIMIT_REACHED"

ALL_EVENT_TYPES = frozenset(
    {
        LOGIN_SUCCESS,
        LOGIN_FAILED,
        LOGOUT,
        TOKEN_REFRESH,
        PASSWORD_CHANGE,
        SESSION_REVOKED,
        TOKEN_REUSE_DETECTED,
        RATE_LIMIT_EXCEEDED,
        SESSION_LIMIT_REACHED,
    }
)
