"""
Themes and assignments API endpoints.

Themes are owned by the teacher who created them and assignments by the
teacher who created them; updates and deletions by scoped roles require
ownership.
"""

from datetime import datetime
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from school_orchestrator.api.security import RequestAccess, get_access, get_orchestrator_store
from school_orchestrator.audit.models import AuditResult
from school_orchestrator.auth.errors import NotFoundError
from school_orchestrator.auth.permissions import Action, ResourceCategory, Role
from school_orchestrator.core.ergomate_sync import SyncError, SyncService, get_ergomate_client
from school_orchestrator.storage.memory_store import OrchestratorStore
from school_orchestrator.storage.models import (
    Assignment,
    AssignmentMode,
    AssignmentStatus,
    AssignmentTarget,
    AssignmentType,
    Theme,
    ThemeStatus,
    as_utc,
    new_id,
    to_dict,
    utcnow,
)

router = APIRouter(prefix="/api", tags=["Content"])


# ============================================================================
# Pydantic Models
# ============================================================================


class ThemeCreate(BaseModel):
    tenant_id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    difficulty: Literal["beginner", "intermediate", "advanced"] = "intermediate"
    content: dict[str, Any] = Field(default_factory=dict)


class ThemeUpdate(BaseModel):
    tenant_id: Optional[str] = None
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    difficulty: Optional[Literal["beginner", "intermediate", "advanced"]] = None
    content: Optional[dict[str, Any]] = None
    status: Optional[ThemeStatus] = None


class TargetModel(BaseModel):
    type: Literal["student", "class"]
    id: str


class AssignmentCreate(BaseModel):
    tenant_id: Optional[str] = None
    theme_id: str
    title: str = Field(..., min_length=1, max_length=200)
    type: AssignmentType = AssignmentType.QUIZ
    mode: AssignmentMode = AssignmentMode.POST_COURS
    due_at: Optional[datetime] = None
    instructions: Optional[str] = None
    targets: list[TargetModel] = Field(default_factory=list)


class AssignmentUpdate(BaseModel):
    tenant_id: Optional[str] = None
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    mode: Optional[AssignmentMode] = None
    due_at: Optional[datetime] = None
    instructions: Optional[str] = None
    targets: Optional[list[TargetModel]] = None


class AssignmentStatusUpdate(BaseModel):
    tenant_id: Optional[str] = None
    status: AssignmentStatus


def _load_theme(store: OrchestratorStore, tenant_id: str, theme_id: str) -> Theme:
    theme = store.themes.get(tenant_id, theme_id)
    if theme is None:
        raise NotFoundError("theme", theme_id)
    return theme


def _load_assignment(store: OrchestratorStore, tenant_id: str, assignment_id: str) -> Assignment:
    assignment = store.assignments.get(tenant_id, assignment_id)
    if assignment is None:
        raise NotFoundError("assignment", assignment_id)
    return assignment


def _targets(
    store: OrchestratorStore, tenant_id: str, targets: list[TargetModel]
) -> list[AssignmentTarget]:
    """Resolve targets within the tenant; unknown ones are not found."""
    resolved = []
    for target in targets:
        collection = store.students if target.type == "student" else store.classes
        if collection.get(tenant_id, target.id) is None:
            raise NotFoundError(target.type, target.id)
        resolved.append(AssignmentTarget(target_type=target.type, target_id=target.id))
    return resolved


# ============================================================================
# Themes
# ============================================================================


@router.get("/themes", summary="List themes")
async def list_themes(
    status: Optional[ThemeStatus] = Query(None),
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.require(ResourceCategory.THEMES, Action.READ)

    owner = access.user_id if access.ctx.role == Role.TEACHER else None
    themes = store.themes.select(
        access.tenant_id,
        lambda t: (owner is None or t.created_by == owner)
        and (status is None or t.status == status),
    )
    themes.sort(key=lambda t: t.created_at, reverse=True)

    rows = []
    for theme in themes:
        row = to_dict(theme)
        row.pop("content")
        row["question_count"] = theme.question_count
        rows.append(row)
    return {"themes": rows, "total": len(rows)}


@router.get("/themes/{theme_id}", summary="Get a theme")
async def get_theme(
    theme_id: str,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.require(ResourceCategory.THEMES, Action.READ, target_id=theme_id)
    return to_dict(_load_theme(store, access.tenant_id, theme_id))


@router.post("/themes", status_code=201, summary="Create a theme")
async def create_theme(
    body: ThemeCreate,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.check_body_tenant(body.tenant_id)
    await access.require(ResourceCategory.THEMES, Action.CREATE)

    theme = Theme(
        id=new_id("theme"),
        tenant_id=access.tenant_id,
        created_by=access.user_id,
        title=body.title,
        description=body.description,
        difficulty=body.difficulty,
        content=body.content,
    )
    store.themes.put(access.tenant_id, theme.id, theme)

    await access.audit("theme_created", "theme", theme.id)
    return to_dict(theme)


@router.patch("/themes/{theme_id}", summary="Update a theme")
async def update_theme(
    theme_id: str,
    body: ThemeUpdate,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.check_body_tenant(body.tenant_id)
    await access.require(ResourceCategory.THEMES, Action.UPDATE, target_id=theme_id)
    theme = _load_theme(store, access.tenant_id, theme_id)
    await access.require_owner(
        ResourceCategory.THEMES, Action.UPDATE, theme.created_by, target_id=theme_id
    )

    changes = body.model_dump(exclude_unset=True)
    changes.pop("tenant_id", None)

    def apply(entry: Theme) -> None:
        for name, value in changes.items():
            setattr(entry, name, value)
        entry.updated_at = utcnow()

    store.themes.update(access.tenant_id, theme_id, apply)

    await access.audit("theme_updated", "theme", theme_id, details={"fields": sorted(changes)})
    return to_dict(theme)


@router.delete("/themes/{theme_id}", summary="Archive a theme")
async def archive_theme(
    theme_id: str,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.require(ResourceCategory.THEMES, Action.DELETE, target_id=theme_id)
    theme = _load_theme(store, access.tenant_id, theme_id)
    await access.require_owner(
        ResourceCategory.THEMES, Action.DELETE, theme.created_by, target_id=theme_id
    )

    def apply(entry: Theme) -> None:
        entry.status = ThemeStatus.ARCHIVED
        entry.updated_at = utcnow()

    store.themes.update(access.tenant_id, theme_id, apply)

    await access.audit("theme_archived", "theme", theme_id)
    return {"success": True, "id": theme_id, "status": ThemeStatus.ARCHIVED.value}


# ============================================================================
# Assignments
# ============================================================================


@router.get("/assignments", summary="List assignments")
async def list_assignments(
    status: Optional[AssignmentStatus] = Query(None),
    theme_id: Optional[str] = Query(None),
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.require(ResourceCategory.ASSIGNMENTS, Action.READ)

    # Teachers see their own assignments.
    owner = access.user_id if access.ctx.role == Role.TEACHER else None
    assignments = store.assignments.select(
        access.tenant_id,
        lambda a: (owner is None or a.teacher_id == owner)
        and (status is None or a.status == status)
        and (theme_id is None or a.theme_id == theme_id),
    )
    assignments.sort(key=lambda a: a.created_at, reverse=True)
    return {"assignments": [to_dict(a) for a in assignments], "total": len(assignments)}


@router.get("/assignments/{assignment_id}", summary="Get an assignment")
async def get_assignment(
    assignment_id: str,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.require(ResourceCategory.ASSIGNMENTS, Action.READ, target_id=assignment_id)
    return to_dict(_load_assignment(store, access.tenant_id, assignment_id))


@router.post("/assignments", status_code=201, summary="Create an assignment")
async def create_assignment(
    body: AssignmentCreate,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.check_body_tenant(body.tenant_id)
    await access.require(ResourceCategory.ASSIGNMENTS, Action.CREATE)
    _load_theme(store, access.tenant_id, body.theme_id)

    assignment = Assignment(
        id=new_id("assign"),
        tenant_id=access.tenant_id,
        teacher_id=access.user_id,
        theme_id=body.theme_id,
        title=body.title,
        type=body.type,
        mode=body.mode,
        due_at=as_utc(body.due_at),
        instructions=body.instructions,
        targets=_targets(store, access.tenant_id, body.targets),
    )
    store.assignments.put(access.tenant_id, assignment.id, assignment)

    await access.audit(
        "assignment_created", "assignment", assignment.id,
        details={"theme_id": body.theme_id, "targets": len(assignment.targets)},
    )
    return to_dict(assignment)


@router.patch("/assignments/{assignment_id}", summary="Update an assignment")
async def update_assignment(
    assignment_id: str,
    body: AssignmentUpdate,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.check_body_tenant(body.tenant_id)
    await access.require(ResourceCategory.ASSIGNMENTS, Action.UPDATE, target_id=assignment_id)
    assignment = _load_assignment(store, access.tenant_id, assignment_id)
    await access.require_owner(
        ResourceCategory.ASSIGNMENTS, Action.UPDATE, assignment.teacher_id,
        target_id=assignment_id,
    )

    changes = body.model_dump(exclude_unset=True, exclude={"tenant_id", "targets"})
    if changes.get("due_at") is not None:
        changes["due_at"] = as_utc(changes["due_at"])
    targets = (
        _targets(store, access.tenant_id, body.targets) if body.targets is not None else None
    )

    def apply(entry: Assignment) -> None:
        for name, value in changes.items():
            setattr(entry, name, value)
        if targets is not None:
            entry.targets = targets
        entry.updated_at = utcnow()

    store.assignments.update(access.tenant_id, assignment_id, apply)

    fields = sorted(changes) + (["targets"] if targets is not None else [])
    await access.audit("assignment_updated", "assignment", assignment_id, details={"fields": fields})
    return to_dict(assignment)


@router.patch("/assignments/{assignment_id}/status", summary="Set assignment status")
async def update_assignment_status(
    assignment_id: str,
    body: AssignmentStatusUpdate,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.check_body_tenant(body.tenant_id)
    await access.require(ResourceCategory.ASSIGNMENTS, Action.UPDATE, target_id=assignment_id)
    assignment = _load_assignment(store, access.tenant_id, assignment_id)
    await access.require_owner(
        ResourceCategory.ASSIGNMENTS, Action.UPDATE, assignment.teacher_id,
        target_id=assignment_id,
    )

    previous = assignment.status

    def apply(entry: Assignment) -> None:
        entry.status = body.status
        entry.updated_at = utcnow()

    store.assignments.update(access.tenant_id, assignment_id, apply)

    await access.audit(
        "assignment_status_changed", "assignment", assignment_id,
        details={"from": previous.value, "to": body.status.value},
    )
    return {"id": assignment_id, "status": body.status.value}


@router.delete("/assignments/{assignment_id}", summary="Delete an assignment")
async def delete_assignment(
    assignment_id: str,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.require(ResourceCategory.ASSIGNMENTS, Action.DELETE, target_id=assignment_id)
    assignment = _load_assignment(store, access.tenant_id, assignment_id)
    await access.require_owner(
        ResourceCategory.ASSIGNMENTS, Action.DELETE, assignment.teacher_id,
        target_id=assignment_id,
    )

    store.assignments.delete(access.tenant_id, assignment_id)

    await access.audit("assignment_deleted", "assignment", assignment_id)
    return {"success": True, "id": assignment_id}


@router.post("/assignments/{assignment_id}/push", summary="Push an assignment to ErgoMate")
async def push_assignment(
    assignment_id: str,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.require(ResourceCategory.ASSIGNMENTS, Action.PUSH, target_id=assignment_id)
    assignment = _load_assignment(store, access.tenant_id, assignment_id)
    await access.require_owner(
        ResourceCategory.ASSIGNMENTS, Action.PUSH, assignment.teacher_id,
        target_id=assignment_id,
    )

    service = SyncService(store, get_ergomate_client())
    try:
        log = await service.push_assignment(access.tenant_id, access.user_id, assignment)
    except SyncError as e:
        await access.audit(
            "assignment_pushed", "assignment", assignment_id,
            result=AuditResult.ERROR, details={"error": e.message},
        )
        raise

    await access.audit(
        "assignment_pushed", "assignment", assignment_id, details={"sync_id": log.id}
    )
    return {
        "id": assignment_id,
        "status": AssignmentStatus.PUSHED.value,
        "sync": to_dict(log),
    }
