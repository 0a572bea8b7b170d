"""SessionGuard — authentication and session security.

Password verification, short-lived access tokens, rotating refresh tokens
with reuse detection, per-user session caps, early access-token revocation
and an append-only security audit log.
"""

__version__ = "0.1.0"
