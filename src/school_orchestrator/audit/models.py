"""
Audit record models.

Defines the immutable audit record and the tenant-scoped query filter.
"""

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class AuditResult(str, Enum):
    """Outcome of an audited event."""

    SUCCESS = "success"
    DENIED = "denied"
    ERROR = "error"


class AuditAction(str, Enum):
    """Well-known action types.

    Handlers may record other action types; these are the ones the
    authorization layer itself emits.
    """

    PERMISSION_DENIED = "permission_denied"
    OWNERSHIP_DENIED = "ownership_denied"
    TENANT_MISMATCH = "tenant_mismatch"


@dataclass(frozen=True)
class RequestMetadata:
    """Transport details attached to audit records."""

    ip: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None


@dataclass(frozen=True)
class AuditRecord:
    """Append-only audit entry."""

    record_id: str
    tenant_id: str
    actor_user_id: Optional[str]
    action_type: str
    target_type: str
    target_id: Optional[str]
    result: AuditResult
    created_at: datetime
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        data = asdict(self)
        data["result"] = self.result.value
        data["created_at"] = self.created_at.isoformat()
        return data

    def to_json(self) -> str:
        """Serialize to a single JSON line."""
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditRecord":
        """Rebuild a record from :meth:`to_dict` output."""
        data = dict(data)
        data["result"] = AuditResult(data["result"])
        if isinstance(data.get("created_at"), str):
            data["created_at"] = datetime.fromisoformat(data["created_at"])
        data["details"] = data.get("details") or {}
        return cls(**data)

    @classmethod
    def from_json(cls, json_str: str) -> "AuditRecord":
        """Parse a JSON line."""
        return cls.from_dict(json.loads(json_str))


@dataclass
class AuditFilter:
    """Tenant-scoped audit query.

    ``tenant_id`` is mandatory: audit records are never read across tenants.
    """

    tenant_id: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    action_type: Optional[str] = None
    target_type: Optional[str] = None
    actor_user_id: Optional[str] = None
    result: Optional[AuditResult] = None

    limit: int = 100
    offset: int = 0
    sort_order: str = "desc"

    def __post_init__(self):
        if isinstance(self.result, str):
            self.result = AuditResult(self.result)

    def match(self, record: AuditRecord) -> bool:
        """Check whether a record satisfies the filter."""
        if record.tenant_id != self.tenant_id:
            return False
        if self.start_date and record.created_at < self.start_date:
            return False
        if self.end_date and record.created_at > self.end_date:
            return False
        if self.action_type and record.action_type != self.action_type:
            return False
        if self.target_type and record.target_type != self.target_type:
            return False
        if self.actor_user_id and record.actor_user_id != self.actor_user_id:
            return False
        if self.result and record.result != self.result:
            return False
        return True


def create_record(
    *,
    tenant_id: str,
    actor_user_id: Optional[str],
    action_type: str,
    target_type: str,
    target_id: Optional[str] = None,
    result: AuditResult = AuditResult.SUCCESS,
    metadata: Optional[RequestMetadata] = None,
    details: Optional[dict[str, Any]] = None,
) -> AuditRecord:
    """Build a new audit record stamped with the current UTC time."""
    metadata = metadata or RequestMetadata()
    return AuditRecord(
        record_id=f"audit_{uuid.uuid4().hex}",
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        action_type=action_type,
        target_type=target_type,
        target_id=target_id,
        result=AuditResult(result),
        created_at=datetime.now(timezone.utc),
        ip=metadata.ip,
        user_agent=metadata.user_agent,
        request_id=metadata.request_id,
        details=details or {},
    )
