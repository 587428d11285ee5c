"""
Audit log API endpoints.

Tenant-scoped queries over the audit trail. The tenant filter always comes
from the admitted request context, never from a parameter.
"""

from collections import Counter
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from school_orchestrator.api.security import RequestAccess, get_access
from school_orchestrator.audit.logger import AuditLogger, get_audit_logger
from school_orchestrator.audit.models import AuditFilter, AuditRecord, AuditResult
from school_orchestrator.auth.errors import BadRequestError
from school_orchestrator.auth.permissions import Action, ResourceCategory
from school_orchestrator.storage.models import as_utc

router = APIRouter(prefix="/api/audit", tags=["Audit API"])

SUMMARY_SCAN_LIMIT = 10000


# ============================================================================
# Pydantic Models
# ============================================================================


class AuditRecordResponse(BaseModel):
    """One audit record."""

    record_id: str
    tenant_id: str
    actor_user_id: Optional[str] = None
    action_type: str
    target_type: str
    target_id: Optional[str] = None
    result: str
    created_at: str
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: AuditRecord) -> "AuditRecordResponse":
        return cls(**record.to_dict())


class AuditQueryResponse(BaseModel):
    records: list[AuditRecordResponse]
    total: int
    limit: int
    offset: int


class AuditSummaryResponse(BaseModel):
    total: int = 0
    by_result: dict[str, int] = Field(default_factory=dict)
    by_action: dict[str, int] = Field(default_factory=dict)


def _check_range(
    start_date: Optional[datetime], end_date: Optional[datetime]
) -> tuple[Optional[datetime], Optional[datetime]]:
    start_date, end_date = as_utc(start_date), as_utc(end_date)
    if start_date and end_date and start_date > end_date:
        raise BadRequestError("from must be before to")
    return start_date, end_date


# ============================================================================
# Query Endpoints
# ============================================================================


@router.get("", response_model=AuditQueryResponse, summary="Query audit records")
async def query_audit_records(
    action_type: Optional[str] = Query(None),
    target_type: Optional[str] = Query(None),
    actor: Optional[str] = Query(None, description="Actor user id"),
    result: Optional[AuditResult] = Query(None),
    start_date: Optional[datetime] = Query(None, alias="from"),
    end_date: Optional[datetime] = Query(None, alias="to"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    access: RequestAccess = Depends(get_access),
    audit: AuditLogger = Depends(get_audit_logger),
) -> AuditQueryResponse:
    """Records of the caller's tenant, newest first by default."""
    await access.require(ResourceCategory.AUDIT, Action.READ)
    start_date, end_date = _check_range(start_date, end_date)

    filter = AuditFilter(
        tenant_id=access.tenant_id,
        start_date=start_date,
        end_date=end_date,
        action_type=action_type,
        target_type=target_type,
        actor_user_id=actor,
        result=result,
        limit=limit,
        offset=offset,
        sort_order=sort_order,
    )
    records = await audit.query(filter)
    total = await audit.count(filter)

    return AuditQueryResponse(
        records=[AuditRecordResponse.from_record(r) for r in records],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/summary", response_model=AuditSummaryResponse, summary="Audit summary")
async def audit_summary(
    start_date: Optional[datetime] = Query(None, alias="from"),
    end_date: Optional[datetime] = Query(None, alias="to"),
    access: RequestAccess = Depends(get_access),
    audit: AuditLogger = Depends(get_audit_logger),
) -> AuditSummaryResponse:
    """Counts by result and by action type over a period."""
    await access.require(ResourceCategory.AUDIT, Action.READ)
    start_date, end_date = _check_range(start_date, end_date)

    records = await audit.query(
        AuditFilter(
            tenant_id=access.tenant_id,
            start_date=start_date,
            end_date=end_date,
            limit=SUMMARY_SCAN_LIMIT,
        )
    )
    return AuditSummaryResponse(
        total=len(records),
        by_result=dict(Counter(r.result.value for r in records)),
        by_action=dict(Counter(r.action_type for r in records)),
    )
