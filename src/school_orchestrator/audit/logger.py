"""
Audit logger.

Appends audit records for authorization denials and successful mutations.
Writes go straight to the store so that a record exists before the
caller's response is produced. A failed write is logged and counted but
never changes the outcome of the request being audited.
"""

import os
from typing import Any, Optional

from school_orchestrator.audit.models import (
    AuditFilter,
    AuditRecord,
    AuditResult,
    RequestMetadata,
    create_record,
)
from school_orchestrator.audit.store import AuditStore, get_audit_store
from school_orchestrator.logging.setup import get_logger
from school_orchestrator.metrics.collectors import AUDIT_RECORDS, AUDIT_WRITE_FAILURES

logger = get_logger(__name__)


class AuditLogger:
    """Record and query audit events."""

    def __init__(self, store: Optional[AuditStore] = None, enabled: bool = True):
        """Initialize the audit logger.

        Args:
            store: Audit store (the global singleton when None).
            enabled: Whether success and error records are written.
                Denials are always recorded.
        """
        self._store = store
        self._enabled = enabled

    @property
    def store(self) -> AuditStore:
        """The store records are written to."""
        if self._store is not None:
            return self._store
        return get_audit_store()

    async def record(
        self,
        tenant_id: str,
        actor_id: Optional[str],
        action_type: str,
        target_type: str,
        target_id: Optional[str] = None,
        result: AuditResult = AuditResult.SUCCESS,
        metadata: Optional[RequestMetadata] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> Optional[AuditRecord]:
        """Append one audit record.

        Args:
            tenant_id: Tenant the event belongs to.
            actor_id: User who triggered the event.
            action_type: What happened (``create``, ``permission_denied``...).
            target_type: Kind of resource involved.
            target_id: Identifier of the resource, if any.
            result: success, denied or error.
            metadata: Request transport details.
            details: Additional structured context.

        Returns:
            The stored record, or None when disabled or the write failed.
            Denied records are written even when the logger is disabled.
        """
        if not self._enabled and result != AuditResult.DENIED:
            return None

        record = create_record(
            tenant_id=tenant_id,
            actor_user_id=actor_id,
            action_type=action_type,
            target_type=target_type,
            target_id=target_id,
            result=result,
            metadata=metadata,
            details=details,
        )

        try:
            await self.store.append(record)
        except Exception as e:
            AUDIT_WRITE_FAILURES.inc()
            logger.error(
                "Error writing audit record: %s",
                str(e),
                extra={
                    "event": "audit_write_failed",
                    "tenant_id": tenant_id,
                    "action_type": action_type,
                    "target_type": target_type,
                },
                exc_info=True,
            )
            return None

        AUDIT_RECORDS.labels(result=record.result.value).inc()
        return record

    async def record_denial(
        self,
        tenant_id: str,
        actor_id: Optional[str],
        action_type: str,
        target_type: str,
        target_id: Optional[str] = None,
        metadata: Optional[RequestMetadata] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> Optional[AuditRecord]:
        """Shortcut for a ``denied`` record."""
        return await self.record(
            tenant_id,
            actor_id,
            action_type,
            target_type,
            target_id=target_id,
            result=AuditResult.DENIED,
            metadata=metadata,
            details=details,
        )

    async def query(self, filter: AuditFilter) -> list[AuditRecord]:
        """Read records for one tenant."""
        return await self.store.query(filter)

    async def count(self, filter: AuditFilter) -> int:
        """Count records for one tenant."""
        return await self.store.count(filter)

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    @property
    def enabled(self) -> bool:
        return self._enabled


# Global audit logger
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get the global audit logger.

    Honours ORCHESTRATOR_AUDIT_ENABLED (default true).
    """
    global _audit_logger
    if _audit_logger is None:
        enabled = os.getenv("ORCHESTRATOR_AUDIT_ENABLED", "true").lower() == "true"
        _audit_logger = AuditLogger(enabled=enabled)
    return _audit_logger


def set_audit_logger(audit_logger: Optional[AuditLogger]) -> None:
    """Replace the global audit logger (for testing)."""
    global _audit_logger
    _audit_logger = audit_logger
