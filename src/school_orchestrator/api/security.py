"""FastAPI dependencies for authorization.

Every tenant-scoped route depends on ``get_access``, which runs the
admission pipeline and hands the route a ``RequestAccess``: the explicit
request context plus the permission checks bound to it.

Example:
    @router.post("/students")
    async def create_student(body: StudentCreate, access: RequestAccess = Depends(get_access)):
        await access.check_body_tenant(body.tenant_id)
        await access.require(ResourceCategory.STUDENTS, Action.CREATE)
"""

import threading
from typing import Any, Optional, Sequence

from fastapi import Depends, Header, Request

from school_orchestrator.audit.logger import AuditLogger, get_audit_logger
from school_orchestrator.audit.models import AuditResult, RequestMetadata
from school_orchestrator.auth.guard import AccessGuard, RequestContext
from school_orchestrator.auth.identity import get_token_service
from school_orchestrator.auth.permissions import (
    ActionLike,
    CategoryLike,
    OwnershipScope,
    ownership_scope,
)
from school_orchestrator.auth.tenant import TenantResolver, get_tenant_registry
from school_orchestrator.logging.setup import bind_request_identity
from school_orchestrator.storage.memory_store import OrchestratorStore, get_store

_guard: Optional[AccessGuard] = None
_guard_lock = threading.Lock()


def get_access_guard() -> AccessGuard:
    """Get the process-wide access guard."""
    global _guard
    with _guard_lock:
        if _guard is None:
            _guard = AccessGuard(
                token_service=get_token_service(),
                resolver=TenantResolver(get_tenant_registry()),
                audit_logger=get_audit_logger(),
            )
    return _guard


def reset_access_guard() -> None:
    """Reset the access guard (for testing)."""
    global _guard
    with _guard_lock:
        _guard = None


def get_orchestrator_store() -> OrchestratorStore:
    return get_store()


def request_metadata(request: Request) -> RequestMetadata:
    """Transport details recorded by the request middleware."""
    state = request.state
    return RequestMetadata(
        ip=getattr(state, "client_ip", None) or (request.client.host if request.client else None),
        user_agent=getattr(state, "user_agent", None) or request.headers.get("user-agent"),
        request_id=getattr(state, "request_id", None),
    )


class RequestAccess:
    """Authorization checks bound to one admitted request."""

    def __init__(self, ctx: RequestContext, guard: AccessGuard, audit: AuditLogger) -> None:
        self.ctx = ctx
        self._guard = guard
        self._audit = audit

    @property
    def tenant_id(self) -> str:
        return self.ctx.tenant_id

    @property
    def user_id(self) -> str:
        return self.ctx.user_id

    @property
    def is_elevated(self) -> bool:
        return ownership_scope(self.ctx.role) == OwnershipScope.ELEVATED

    async def require(
        self, category: CategoryLike, action: ActionLike, target_id: Optional[str] = None
    ) -> None:
        await self._guard.enforcer.require_permission(
            self.ctx.identity, category, action,
            metadata=self.ctx.metadata, target_id=target_id,
        )

    async def require_any(
        self,
        category: CategoryLike,
        actions: Sequence[ActionLike],
        target_id: Optional[str] = None,
    ) -> None:
        await self._guard.enforcer.require_any(
            self.ctx.identity, category, actions,
            metadata=self.ctx.metadata, target_id=target_id,
        )

    async def require_owner(
        self,
        category: CategoryLike,
        action: ActionLike,
        owner_id: Optional[str],
        target_id: Optional[str] = None,
    ) -> None:
        await self._guard.enforcer.require_owned_or_elevated(
            self.ctx.identity, category, action, owner_id,
            metadata=self.ctx.metadata, target_id=target_id,
        )

    def can(self, category: CategoryLike, action: ActionLike) -> bool:
        return self._guard.enforcer.can(self.ctx.identity, category, action)

    def permissions(self) -> list[str]:
        return self._guard.enforcer.permissions_for(self.ctx.identity)

    async def check_body_tenant(self, body_tenant_id: Optional[str]) -> None:
        await self._guard.check_body_tenant(self.ctx, body_tenant_id)

    async def audit(
        self,
        action_type: str,
        target_type: str,
        target_id: Optional[str] = None,
        result: AuditResult = AuditResult.SUCCESS,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """Record the outcome of a state-changing operation."""
        await self._audit.record(
            self.ctx.tenant_id,
            self.ctx.user_id,
            action_type,
            target_type,
            target_id=target_id,
            result=result,
            metadata=self.ctx.metadata,
            details=details,
        )


async def get_request_context(
    request: Request,
    authorization: Optional[str] = Header(None),
    x_orchestrator_id: Optional[str] = Header(None),
    guard: AccessGuard = Depends(get_access_guard),
) -> RequestContext:
    """Admit the request: tenant presence, credential, tenant, reconciliation."""
    tenant_raw = x_orchestrator_id
    if not (tenant_raw or "").strip() and request.method == "GET":
        tenant_raw = request.query_params.get("tenant_id")
    ctx = await guard.admit(authorization, tenant_raw, request_metadata(request))
    bind_request_identity(ctx.tenant_id, ctx.user_id)
    return ctx


async def get_access(
    ctx: RequestContext = Depends(get_request_context),
    guard: AccessGuard = Depends(get_access_guard),
) -> RequestAccess:
    return RequestAccess(ctx, guard, get_audit_logger())
