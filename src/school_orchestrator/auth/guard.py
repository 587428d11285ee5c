"""Request admission pipeline.

Runs the ordered authorization steps for one request and produces the
explicit RequestContext that handlers receive:

1. tenant identifier presence
2. credential verification
3. tenant resolution
4. tenant/identity reconciliation

Permission checks (step 5) are made by handlers through the RBAC enforcer
carried on the context, since only the handler knows the resource and
action involved.
"""

from dataclasses import dataclass
from typing import Optional

from school_orchestrator.audit.logger import AuditLogger
from school_orchestrator.audit.models import AuditAction, RequestMetadata
from school_orchestrator.auth.errors import (
    MismatchError,
    OrchestratorError,
    TenantError,
    TenantErrorKind,
)
from school_orchestrator.auth.identity import Identity, TokenService
from school_orchestrator.auth.permissions import Role
from school_orchestrator.auth.rbac import RBACEnforcer
from school_orchestrator.auth.reconcile import reconcile, reconcile_body
from school_orchestrator.auth.tenant import TenantContext, TenantResolver
from school_orchestrator.logging.setup import get_logger
from school_orchestrator.metrics.collectors import AUTHZ_DENIALS

logger = get_logger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """Everything a handler knows about the caller.

    Built once per request and passed explicitly to every downstream call.
    """

    identity: Identity
    tenant: TenantContext
    metadata: RequestMetadata

    @property
    def tenant_id(self) -> str:
        return self.tenant.tenant_id

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    @property
    def role(self) -> Role:
        return self.identity.role


class AccessGuard:
    """Admit requests into a tenant."""

    def __init__(
        self,
        token_service: TokenService,
        resolver: TenantResolver,
        audit_logger: AuditLogger,
    ) -> None:
        self._tokens = token_service
        self._resolver = resolver
        self._audit = audit_logger
        self.enforcer = RBACEnforcer(audit_logger)

    async def admit(
        self,
        credential: Optional[str],
        tenant_id_raw: Optional[str],
        metadata: Optional[RequestMetadata] = None,
    ) -> RequestContext:
        """Authenticate the caller and bind the request to its tenant.

        Args:
            credential: Authorization header value.
            tenant_id_raw: X-Orchestrator-Id header (or query fallback).
            metadata: Transport details for audit records.

        Returns:
            RequestContext for the handler.

        Raises:
            TenantError: Missing, unknown or inactive tenant.
            AuthError: Missing, invalid or expired credential.
            MismatchError: Credential issued for another tenant.
            TenantStoreUnavailable: Registry outage.
        """
        metadata = metadata or RequestMetadata()

        try:
            # Presence first: a missing tenant id wins over any credential error.
            if not (tenant_id_raw or "").strip():
                raise TenantError(TenantErrorKind.MISSING)

            identity = self._tokens.authenticate(credential)
            tenant = self._resolver.resolve(tenant_id_raw)
        except OrchestratorError as e:
            AUTHZ_DENIALS.labels(code=e.code).inc()
            logger.info(
                "Request rejected before authorization",
                extra={
                    "event": "admission_rejected",
                    "code": e.code,
                    "request_id": metadata.request_id,
                },
            )
            raise

        try:
            reconcile(identity, tenant)
        except MismatchError as e:
            await self._record_mismatch(identity, tenant.tenant_id, e.source, metadata)
            raise

        return RequestContext(identity=identity, tenant=tenant, metadata=metadata)

    async def check_body_tenant(
        self, ctx: RequestContext, body_tenant_id: Optional[str]
    ) -> None:
        """Reconcile a ``tenant_id`` carried in a write payload.

        Raises:
            MismatchError: If the body targets another tenant.
        """
        try:
            reconcile_body(ctx.identity, ctx.tenant, body_tenant_id)
        except MismatchError as e:
            await self._record_mismatch(ctx.identity, body_tenant_id, e.source, ctx.metadata)
            raise

    async def _record_mismatch(
        self,
        identity: Identity,
        requested_tenant_id: Optional[str],
        source: str,
        metadata: RequestMetadata,
    ) -> None:
        AUTHZ_DENIALS.labels(code=MismatchError.code).inc()
        # Recorded under the signed tenant: the requested one is unverified.
        await self._audit.record_denial(
            identity.tenant_claim,
            identity.user_id,
            AuditAction.TENANT_MISMATCH.value,
            "tenant",
            target_id=requested_tenant_id,
            metadata=metadata,
            details={"source": source, "role": identity.role.value},
        )
