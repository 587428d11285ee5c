"""
Quality feed API endpoints.

Issues reported on pedagogical content. Listing, creating and updating
each accept either the plain catalog grant or the ``validate`` grant held
by reviewers.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from school_orchestrator.api.security import RequestAccess, get_access, get_orchestrator_store
from school_orchestrator.auth.permissions import Action, ResourceCategory, Role
from school_orchestrator.core.quality_feed import QualityFeed
from school_orchestrator.storage.memory_store import OrchestratorStore
from school_orchestrator.storage.models import IssueSeverity, IssueStatus, to_dict

router = APIRouter(prefix="/api/feed", tags=["Quality Feed"])


class IssueCreate(BaseModel):
    tenant_id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    theme_id: Optional[str] = None
    issue_type: str = "other"
    severity: IssueSeverity = IssueSeverity.WARNING
    source: str = "manual"


class IssueUpdate(BaseModel):
    tenant_id: Optional[str] = None
    status: Optional[IssueStatus] = None
    assigned_to: Optional[str] = None
    resolution_notes: Optional[str] = None


def get_quality_feed(
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> QualityFeed:
    return QualityFeed(store)


@router.get("/quality", summary="List quality issues")
async def list_quality_issues(
    status: Optional[IssueStatus] = Query(None),
    severity: Optional[IssueSeverity] = Query(None),
    theme_id: Optional[str] = Query(None),
    issue_type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    access: RequestAccess = Depends(get_access),
    feed: QualityFeed = Depends(get_quality_feed),
) -> dict:
    await access.require_any(ResourceCategory.CATALOG, (Action.READ, Action.VALIDATE))

    teacher_id = access.user_id if access.ctx.role == Role.TEACHER else None
    issues, total, summary = feed.list_issues(
        access.tenant_id,
        teacher_id=teacher_id,
        theme_id=theme_id,
        status=status,
        severity=severity,
        issue_type=issue_type,
        limit=limit,
        offset=offset,
    )
    return {
        "issues": [to_dict(i) for i in issues],
        "total": total,
        "summary": summary,
        "limit": limit,
        "offset": offset,
    }


@router.post("/quality", status_code=201, summary="Report a quality issue")
async def create_quality_issue(
    body: IssueCreate,
    access: RequestAccess = Depends(get_access),
    feed: QualityFeed = Depends(get_quality_feed),
) -> dict:
    await access.check_body_tenant(body.tenant_id)
    await access.require_any(ResourceCategory.CATALOG, (Action.CREATE, Action.VALIDATE))

    issue = feed.create_issue(
        access.tenant_id,
        access.user_id,
        title=body.title,
        description=body.description,
        theme_id=body.theme_id,
        issue_type=body.issue_type,
        severity=body.severity,
        source=body.source,
    )

    await access.audit(
        "quality_issue_created", "quality_issue", issue.id,
        details={"severity": issue.severity.value, "theme_id": issue.theme_id},
    )
    return to_dict(issue)


@router.patch("/quality/{issue_id}", summary="Update a quality issue")
async def update_quality_issue(
    issue_id: str,
    body: IssueUpdate,
    access: RequestAccess = Depends(get_access),
    feed: QualityFeed = Depends(get_quality_feed),
) -> dict:
    await access.check_body_tenant(body.tenant_id)
    await access.require_any(
        ResourceCategory.CATALOG, (Action.UPDATE, Action.VALIDATE), target_id=issue_id
    )

    issue = feed.update_issue(
        access.tenant_id,
        issue_id,
        access.user_id,
        status=body.status,
        assigned_to=body.assigned_to,
        resolution_notes=body.resolution_notes,
    )

    await access.audit(
        "quality_issue_updated", "quality_issue", issue_id,
        details={"status": issue.status.value},
    )
    return to_dict(issue)
