"""RBAC enforcement.

The single call site resource handlers use to gate an action. Combines the
permission table with optional ownership scoping and reports every denial
to the audit logger before raising.

Usage:
    enforcer = RBACEnforcer(audit_logger)
    await enforcer.require_permission(identity, ResourceCategory.STUDENTS, Action.READ)
"""

from typing import Optional, Sequence

from school_orchestrator.audit.logger import AuditLogger
from school_orchestrator.audit.models import AuditAction, RequestMetadata
from school_orchestrator.auth.errors import ForbiddenError, ForbiddenReason
from school_orchestrator.auth.identity import Identity
from school_orchestrator.auth.permissions import (
    ActionLike,
    CategoryLike,
    OwnershipScope,
    ResourceCategory,
    is_allowed,
    is_allowed_any,
    ownership_scope,
    permission_string,
    permissions_for_role,
)
from school_orchestrator.logging.setup import get_logger
from school_orchestrator.metrics.collectors import AUTHZ_DENIALS

logger = get_logger(__name__)


def _category_value(category: CategoryLike) -> str:
    if isinstance(category, ResourceCategory):
        return category.value
    return str(category)


class RBACEnforcer:
    """Gate actions on the permission table and resource ownership."""

    def __init__(self, audit_logger: AuditLogger) -> None:
        self._audit = audit_logger

    async def require_permission(
        self,
        identity: Identity,
        category: CategoryLike,
        action: ActionLike,
        *,
        metadata: Optional[RequestMetadata] = None,
        target_id: Optional[str] = None,
    ) -> None:
        """Require a single grant.

        Raises:
            ForbiddenError: PERMISSION_DENIED naming ``category:action``.
        """
        if is_allowed(identity.role, category, action):
            return

        await self._deny(
            identity,
            category,
            ForbiddenReason.PERMISSION_DENIED,
            [permission_string(category, action)],
            metadata=metadata,
            target_id=target_id,
        )

    async def require_any(
        self,
        identity: Identity,
        category: CategoryLike,
        actions: Sequence[ActionLike],
        *,
        metadata: Optional[RequestMetadata] = None,
        target_id: Optional[str] = None,
    ) -> None:
        """Require at least one of several equivalent grants.

        Raises:
            ForbiddenError: PERMISSION_DENIED listing every alternative.
        """
        if is_allowed_any(identity.role, category, actions):
            return

        await self._deny(
            identity,
            category,
            ForbiddenReason.PERMISSION_DENIED,
            [permission_string(category, action) for action in actions],
            metadata=metadata,
            target_id=target_id,
        )

    async def require_owned_or_elevated(
        self,
        identity: Identity,
        category: CategoryLike,
        action: ActionLike,
        owner_id: Optional[str],
        *,
        metadata: Optional[RequestMetadata] = None,
        target_id: Optional[str] = None,
    ) -> None:
        """Require a grant plus ownership unless the role is elevated.

        Raises:
            ForbiddenError: PERMISSION_DENIED or NOT_OWNER.
        """
        await self.require_permission(
            identity, category, action, metadata=metadata, target_id=target_id
        )

        if ownership_scope(identity.role) == OwnershipScope.ELEVATED:
            return

        if owner_id is not None and identity.user_id == owner_id:
            return

        await self._deny(
            identity,
            category,
            ForbiddenReason.NOT_OWNER,
            [permission_string(category, action)],
            metadata=metadata,
            target_id=target_id,
        )

    def permissions_for(self, identity: Identity) -> list[str]:
        """Every ``category:action`` grant held by the identity's role."""
        return permissions_for_role(identity.role)

    def can(self, identity: Identity, category: CategoryLike, action: ActionLike) -> bool:
        """Non-enforcing check, for shaping responses (no audit, no error)."""
        return is_allowed(identity.role, category, action)

    async def _deny(
        self,
        identity: Identity,
        category: CategoryLike,
        reason: ForbiddenReason,
        required: list[str],
        *,
        metadata: Optional[RequestMetadata],
        target_id: Optional[str],
    ) -> None:
        action_type = (
            AuditAction.OWNERSHIP_DENIED
            if reason == ForbiddenReason.NOT_OWNER
            else AuditAction.PERMISSION_DENIED
        )

        AUTHZ_DENIALS.labels(code="forbidden").inc()
        logger.warning(
            "Authorization denied",
            extra={
                "event": "authz_denied",
                "reason": reason.value,
                "user_id": identity.user_id,
                "role": identity.role.value,
                "tenant_id": identity.tenant_claim,
                "required_permissions": required,
                "target_id": target_id,
            },
        )

        await self._audit.record_denial(
            identity.tenant_claim,
            identity.user_id,
            action_type.value,
            _category_value(category),
            target_id=target_id,
            metadata=metadata,
            details={
                "reason": reason.value,
                "role": identity.role.value,
                "required_permissions": required,
            },
        )

        raise ForbiddenError(
            reason,
            required_permissions=required,
            role=identity.role.value,
        )
