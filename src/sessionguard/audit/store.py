"""Audit logger — append-only security event log.

Learn: Same shape as an event store: every security-relevant transition
INSERTs a row and nothing ever UPDATEs or DELETEs one. This core only
writes; dashboards and alerting read the table.

Each append is mirrored to structlog at a level matching its severity,
so a CRITICAL reuse detection shows up in the application log stream
immediately, not only when someone queries the table.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from sessionguard.audit.types import ALL_EVENT_TYPES
from sessionguard.db.models import AuditLog, AuditSeverity
from sessionguard.db.timeout import bounded

logger = structlog.get_logger()

UNKNOWN = "unknown"

_LOG_METHODS = {
    AuditSeverity.INFO: "info",
    AuditSeverity.WARNING: "warning",
    AuditSeverity.CRITICAL: "critical",
}


class AuditLogger:
    """Append-only audit log backed by the audit_logs table."""

    def __init__(self, db: AsyncSession, timeout: float = 5.0):
        self.db = db
        self.timeout = timeout

    async def log(
        self,
        event_type: str,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
        email: Optional[str] = None,
        metadata: Optional[dict] = None,
        severity: AuditSeverity = AuditSeverity.INFO,
    ) -> AuditLog:
        """Append one audit record. Returns the created row."""
        if event_type not in ALL_EVENT_TYPES:
            raise ValueError(f"Unknown audit event type: {event_type}")

        entry = AuditLog(
            event_type=event_type,
            user_id=user_id,
            email=email,
            ip_address=ip_address or UNKNOWN,
            user_agent=user_agent or UNKNOWN,
            severity=AuditSeverity(severity).value,
            meta=metadata,
        )
        self.db.add(entry)
        await bounded(self.db.flush(), self.timeout)

        getattr(logger, _LOG_METHODS[AuditSeverity(severity)])(
            "audit.event",
            event_type=event_type,
            user_id=str(user_id) if user_id else None,
            ip_address=entry.ip_address,
            severity=entry.severity,
            metadata=metadata,
        )
        return entry
