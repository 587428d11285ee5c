"""Authentication and authorization module for the School Orchestrator.

This module provides:
- Credential verification (identity.py)
- Multi-tenant resolution (tenant.py)
- Tenant/identity reconciliation (reconcile.py)
- Role-based access control (permissions.py, rbac.py)
- The per-request admission pipeline (guard.py)
"""

from school_orchestrator.auth.errors import (
    AuthError,
    AuthErrorKind,
    ForbiddenError,
    ForbiddenReason,
    MismatchError,
    OrchestratorError,
    TenantError,
    TenantErrorKind,
    TenantStoreUnavailable,
)
from school_orchestrator.auth.guard import AccessGuard, RequestContext
from school_orchestrator.auth.identity import Identity, TokenService, get_token_service
from school_orchestrator.auth.permissions import (
    Action,
    ResourceCategory,
    Role,
    is_allowed,
    is_allowed_any,
)
from school_orchestrator.auth.rbac import RBACEnforcer
from school_orchestrator.auth.reconcile import reconcile, reconcile_body
from school_orchestrator.auth.tenant import (
    Tenant,
    TenantContext,
    TenantRegistry,
    TenantResolver,
    TenantStatus,
    get_tenant_registry,
)

__all__ = [
    "AccessGuard",
    "Action",
    "AuthError",
    "AuthErrorKind",
    "ForbiddenError",
    "ForbiddenReason",
    "Identity",
    "MismatchError",
    "OrchestratorError",
    "RBACEnforcer",
    "RequestContext",
    "ResourceCategory",
    "Role",
    "Tenant",
    "TenantContext",
    "TenantError",
    "TenantErrorKind",
    "TenantRegistry",
    "TenantResolver",
    "TenantStatus",
    "TenantStoreUnavailable",
    "TokenService",
    "get_tenant_registry",
    "get_token_service",
    "is_allowed",
    "is_allowed_any",
    "reconcile",
    "reconcile_body",
]
