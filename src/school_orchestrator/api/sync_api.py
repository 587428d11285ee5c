"""
ErgoMate synchronization API endpoints.

Outbound pushes and pulls are audited with their outcome; an ErgoMate
failure answers 502 ``sync_failed`` after an ``error`` audit record.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from school_orchestrator.api.security import RequestAccess, get_access, get_orchestrator_store
from school_orchestrator.audit.models import AuditResult
from school_orchestrator.auth.permissions import Action, ResourceCategory
from school_orchestrator.core.ergomate_sync import SyncError, SyncService, get_ergomate_client
from school_orchestrator.storage.memory_store import OrchestratorStore
from school_orchestrator.storage.models import to_dict

router = APIRouter(prefix="/api/sync", tags=["ErgoMate Sync"])


class SyncRequest(BaseModel):
    tenant_id: Optional[str] = None


class PullRequest(BaseModel):
    tenant_id: Optional[str] = None
    since: Optional[datetime] = None


class ResultRequest(BaseModel):
    """A result ErgoMate reports for one student on one theme."""

    tenant_id: Optional[str] = None
    student_id: str
    theme_id: str
    score: float = Field(..., ge=0, le=100)
    time_spent: int = Field(0, ge=0, description="Seconds")
    mastery: Optional[float] = Field(None, ge=0, le=1)
    ended_at: Optional[datetime] = None


def get_sync_service(
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> SyncService:
    return SyncService(store, get_ergomate_client())


@router.post("/students", summary="Push the roster to ErgoMate")
async def push_students(
    body: Optional[SyncRequest] = None,
    access: RequestAccess = Depends(get_access),
    service: SyncService = Depends(get_sync_service),
) -> dict:
    await access.check_body_tenant(body.tenant_id if body else None)
    await access.require(ResourceCategory.SYNC, Action.PUSH)

    try:
        log = await service.push_students(access.tenant_id, access.user_id)
    except SyncError as e:
        await access.audit(
            "sync_students", "sync", result=AuditResult.ERROR, details={"error": e.message}
        )
        raise

    await access.audit("sync_students", "sync", log.id, details={"items": log.payload.get("items")})
    return to_dict(log)


@router.post("/stats", summary="Pull results from ErgoMate")
async def pull_stats(
    body: Optional[PullRequest] = None,
    access: RequestAccess = Depends(get_access),
    service: SyncService = Depends(get_sync_service),
) -> dict:
    await access.check_body_tenant(body.tenant_id if body else None)
    await access.require(ResourceCategory.SYNC, Action.PUSH)

    since = body.since if body else None
    try:
        log = await service.pull_stats(access.tenant_id, access.user_id, since)
    except SyncError as e:
        await access.audit(
            "sync_stats", "sync", result=AuditResult.ERROR, details={"error": e.message}
        )
        raise

    await access.audit(
        "sync_stats", "sync", log.id,
        details={
            "imported": log.payload.get("imported"),
            "skipped": log.payload.get("skipped"),
        },
    )
    return to_dict(log)


@router.post("/results", status_code=201, summary="Record a result")
async def record_result(
    body: ResultRequest,
    access: RequestAccess = Depends(get_access),
    service: SyncService = Depends(get_sync_service),
) -> dict:
    await access.check_body_tenant(body.tenant_id)
    await access.require(ResourceCategory.SYNC, Action.PUSH)

    stat = service.record_result(
        access.tenant_id,
        student_id=body.student_id,
        theme_id=body.theme_id,
        score=body.score,
        time_spent_seconds=body.time_spent,
        mastery=body.mastery,
        ended_at=body.ended_at,
    )

    await access.audit(
        "result_recorded", "student_stat", stat.key, details={"score": body.score}
    )
    return to_dict(stat)


@router.post("/assignments/{assignment_id}/ack", summary="Acknowledge an assignment")
async def acknowledge_assignment(
    assignment_id: str,
    access: RequestAccess = Depends(get_access),
    service: SyncService = Depends(get_sync_service),
) -> dict:
    await access.require(ResourceCategory.SYNC, Action.PUSH, target_id=assignment_id)

    assignment = service.acknowledge(access.tenant_id, assignment_id)

    await access.audit("assignment_acknowledged", "assignment", assignment_id)
    return {
        "id": assignment.id,
        "status": assignment.status.value,
        "ergo_ack_at": assignment.ergo_ack_at.isoformat(),
    }


@router.get("/status", summary="Recent synchronization runs")
async def sync_status(
    limit: int = Query(20, ge=1, le=100),
    access: RequestAccess = Depends(get_access),
    service: SyncService = Depends(get_sync_service),
) -> dict:
    await access.require(ResourceCategory.SYNC, Action.READ)

    runs = service.recent_runs(access.tenant_id, limit)
    return {"runs": [to_dict(r) for r in runs], "total": len(runs)}
