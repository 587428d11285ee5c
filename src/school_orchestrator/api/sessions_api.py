"""
Collaborative session API endpoints.

Student devices poll ``/{id}/poll`` for changes and post participant
updates to ``/{id}/update``; the session owner starts and ends it.
"""

from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from school_orchestrator.api.security import RequestAccess, get_access, get_orchestrator_store
from school_orchestrator.auth.permissions import Action, ResourceCategory
from school_orchestrator.core.collaborative import SessionService
from school_orchestrator.storage.memory_store import OrchestratorStore
from school_orchestrator.storage.models import SessionStatus, to_dict

router = APIRouter(prefix="/api/sessions", tags=["Collaborative Sessions"])

# 9999-12-31T23:59:59Z
MAX_POLL_TIMESTAMP = 253402300799


class SessionCreate(BaseModel):
    theme_id: str
    title: str = Field(..., min_length=1, max_length=200)
    max_participants: int = Field(30, ge=1, le=200)
    duration_minutes: int = Field(30, ge=1, le=240)
    settings: dict[str, Any] = Field(default_factory=dict)


class JoinRequest(BaseModel):
    student_id: str


class ParticipantUpdate(BaseModel):
    student_id: str
    update_type: Literal["ready", "answer", "score", "leave"]
    data: dict[str, Any] = Field(default_factory=dict)


def get_session_service(
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> SessionService:
    return SessionService(store)


def _summary(session) -> dict:
    data = to_dict(session)
    data.pop("participants")
    data.pop("questions")
    return data


@router.get("", summary="List sessions")
async def list_sessions(
    status: Optional[SessionStatus] = Query(None),
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.require(ResourceCategory.SESSIONS, Action.READ)

    sessions = store.sessions.select(
        access.tenant_id, lambda s: status is None or s.status == status
    )
    sessions.sort(key=lambda s: s.created_at, reverse=True)
    return {"sessions": [_summary(s) for s in sessions], "total": len(sessions)}


@router.post("", status_code=201, summary="Create a session")
async def create_session(
    body: SessionCreate,
    access: RequestAccess = Depends(get_access),
    service: SessionService = Depends(get_session_service),
) -> dict:
    await access.require(ResourceCategory.SESSIONS, Action.CREATE)

    session = service.create(
        access.tenant_id,
        access.user_id,
        theme_id=body.theme_id,
        title=body.title,
        max_participants=body.max_participants,
        duration_minutes=body.duration_minutes,
        settings=body.settings,
    )

    await access.audit("session_created", "session", session.id)
    return _summary(session)


@router.get("/{session_id}", summary="Get a session")
async def get_session(
    session_id: str,
    access: RequestAccess = Depends(get_access),
    service: SessionService = Depends(get_session_service),
) -> dict:
    await access.require(ResourceCategory.SESSIONS, Action.READ, target_id=session_id)
    return to_dict(service.get(access.tenant_id, session_id))


@router.post("/{session_id}/join", summary="Join a session")
async def join_session(
    session_id: str,
    body: JoinRequest,
    access: RequestAccess = Depends(get_access),
    service: SessionService = Depends(get_session_service),
) -> dict:
    await access.require(ResourceCategory.SESSIONS, Action.UPDATE, target_id=session_id)

    session = service.join(access.tenant_id, session_id, body.student_id)

    await access.audit(
        "session_joined", "session", session_id, details={"student_id": body.student_id}
    )
    return {
        "session_id": session.id,
        "session_code": session.session_code,
        "status": session.status.value,
        "current_participants": session.current_participants,
    }


@router.get("/{session_id}/poll", summary="Poll session state")
async def poll_session(
    session_id: str,
    student_id: str = Query(...),
    last_poll: Optional[float] = Query(
        None, ge=0, le=MAX_POLL_TIMESTAMP, description="Epoch seconds of the previous poll"
    ),
    access: RequestAccess = Depends(get_access),
    service: SessionService = Depends(get_session_service),
) -> dict:
    await access.require(ResourceCategory.SESSIONS, Action.READ, target_id=session_id)
    return service.poll(access.tenant_id, session_id, student_id, last_poll)


@router.post("/{session_id}/update", summary="Update a participant")
async def update_participant(
    session_id: str,
    body: ParticipantUpdate,
    access: RequestAccess = Depends(get_access),
    service: SessionService = Depends(get_session_service),
) -> dict:
    await access.require(ResourceCategory.SESSIONS, Action.UPDATE, target_id=session_id)

    result = service.apply_update(
        access.tenant_id, session_id, body.student_id, body.update_type, body.data
    )

    await access.audit(
        "session_updated", "session", session_id,
        details={"student_id": body.student_id, "update_type": body.update_type},
    )
    return {"success": True, **result}


async def _transition(
    session_id: str,
    target: SessionStatus,
    access: RequestAccess,
    service: SessionService,
) -> dict:
    await access.require(ResourceCategory.SESSIONS, Action.UPDATE, target_id=session_id)
    session = service.get(access.tenant_id, session_id)
    await access.require_owner(
        ResourceCategory.SESSIONS, Action.UPDATE, session.created_by, target_id=session_id
    )

    session = service.transition(access.tenant_id, session_id, target)

    await access.audit(
        f"session_{'started' if target == SessionStatus.ACTIVE else 'ended'}",
        "session",
        session_id,
    )
    return _summary(session)


@router.post("/{session_id}/start", summary="Start a session")
async def start_session(
    session_id: str,
    access: RequestAccess = Depends(get_access),
    service: SessionService = Depends(get_session_service),
) -> dict:
    return await _transition(session_id, SessionStatus.ACTIVE, access, service)


@router.post("/{session_id}/end", summary="End a session")
async def end_session(
    session_id: str,
    access: RequestAccess = Depends(get_access),
    service: SessionService = Depends(get_session_service),
) -> dict:
    return await _transition(session_id, SessionStatus.COMPLETED, access, service)
