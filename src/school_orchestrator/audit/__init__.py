"""
Audit trail for the School Orchestrator.

Append-only, tenant-scoped records of authorization denials and
successful mutations.
"""

from school_orchestrator.audit.logger import (
    AuditLogger,
    get_audit_logger,
    set_audit_logger,
)
from school_orchestrator.audit.models import (
    AuditAction,
    AuditFilter,
    AuditRecord,
    AuditResult,
    RequestMetadata,
    create_record,
)
from school_orchestrator.audit.store import (
    AuditStore,
    FileAuditStore,
    MemoryAuditStore,
    SqliteAuditStore,
    get_audit_store,
    set_audit_store,
)

__all__ = [
    "AuditAction",
    "AuditFilter",
    "AuditLogger",
    "AuditRecord",
    "AuditResult",
    "AuditStore",
    "FileAuditStore",
    "MemoryAuditStore",
    "RequestMetadata",
    "SqliteAuditStore",
    "create_record",
    "get_audit_logger",
    "get_audit_store",
    "set_audit_logger",
    "set_audit_store",
]
