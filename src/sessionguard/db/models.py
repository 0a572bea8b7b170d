"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Constraints and indexes are defined here and
Alembic migrations mirror them.

Key concepts:
- UUID primary keys for users, sessions and blacklist entries
- Portable column types (Uuid, JSON, UTCDateTime) so the same models run on
  PostgreSQL in production and SQLite in tests
- Every datetime is timezone-aware UTC, on the way in and on the way out
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class UTCDateTime(TypeDecorator):
    """DateTime that always binds and loads timezone-aware UTC values.

    SQLite has no timezone support and hands back naive datetimes; they are
    stored as UTC, so re-attaching UTC on load is exact.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Role(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    WORKER = "WORKER"
    USER = "USER"


class AuditSeverity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


# ══════════════════════════════════════════════════════════════
# Identity
# ══════════════════════════════════════════════════════════════


class User(Base):
    """A human user.

    Learn: Email is normalized (trimmed, lower-cased) before it ever
    reaches this table, so the unique constraint is case-insensitive
    in practice. Users are never deleted by the auth core.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=Role.USER.value
    )  # ADMIN, MANAGER, WORKER, USER
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow
    )


# ══════════════════════════════════════════════════════════════
# Sessions (refresh-token grants)
# ══════════════════════════════════════════════════════════════


class Session(Base):
    """One live refresh-token grant.

    Learn: The refresh token the client holds is "<selector>.<verifier>".
    The selector is stored in clear and uniquely indexed, so finding the
    candidate row is a single index lookup. Only a bcrypt hash of the
    verifier is stored. previous_selector keeps the selector replaced at
    the last rotation; seeing it again means a rotated token was replayed.
    """

    __tablename__ = "auth_sessions"
    __table_args__ = (
        Index("idx_auth_sessions_previous_selector", "previous_selector"),
        Index("idx_auth_sessions_user_created", "user_id", "created_at"),
        Index("idx_auth_sessions_expires", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token_selector: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    token_verifier_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    previous_selector: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    rotated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class TokenBlacklist(Base):
    """Early revocation of a still-valid access token.

    Learn: Access tokens are stateless JWTs, so logout cannot "delete"
    them. Instead we store a SHA-256 of the token until the moment it
    would have expired anyway. Rows past expires_at are dead weight and
    are purged by cleanup.
    """

    __tablename__ = "token_blacklist"
    __table_args__ = (
        Index("idx_token_blacklist_expires", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


# ══════════════════════════════════════════════════════════════
# Security audit log
# ══════════════════════════════════════════════════════════════


class AuditLog(Base):
    """Append-only security event record.

    Learn: Written on every security-relevant transition, never updated or
    deleted here. External monitoring reads it.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_logs_event_type", "event_type"),
        Index("idx_audit_logs_user", "user_id"),
        Index("idx_audit_logs_created", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False)
    user_agent: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(
        String(10), nullable=False, default=AuditSeverity.INFO.value
    )
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    # Note: Python attr is "meta" because "metadata" is reserved by SQLAlchemy.
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
