"""Tenant/identity reconciliation.

The tenant arrives through two channels: the signed credential claim and the
unsigned X-Orchestrator-Id header. The claim is authoritative; the header is
only accepted when it names the same tenant. Legacy clients that also send
``tenant_id`` in a request body get the same comparison on that field.
"""

from typing import Optional

from school_orchestrator.auth.errors import MismatchError
from school_orchestrator.auth.identity import Identity
from school_orchestrator.auth.tenant import TenantContext
from school_orchestrator.logging.setup import get_logger

logger = get_logger(__name__)


def reconcile(identity: Identity, tenant_context: TenantContext) -> None:
    """Require the credential's tenant claim to match the resolved tenant.

    Raises:
        MismatchError: If the tenants differ.
    """
    if identity.tenant_claim != tenant_context.tenant_id:
        logger.warning(
            "Tenant mismatch between credential and request",
            extra={
                "event": "tenant_mismatch",
                "source": "header",
                "auth_tenant_id": identity.tenant_claim,
                "request_tenant_id": tenant_context.tenant_id,
                "user_id": identity.user_id,
            },
        )
        raise MismatchError(source="header")


def reconcile_body(
    identity: Identity,
    tenant_context: TenantContext,
    body_tenant_id: Optional[str],
) -> None:
    """Apply the reconciliation rule to a ``tenant_id`` sent in a body.

    A body without the field passes; an empty string counts as present.

    Raises:
        MismatchError: If the body names another tenant.
    """
    if body_tenant_id is None:
        return

    if (
        body_tenant_id != identity.tenant_claim
        or body_tenant_id != tenant_context.tenant_id
    ):
        logger.warning(
            "Tenant mismatch between credential and request body",
            extra={
                "event": "tenant_mismatch",
                "source": "body",
                "auth_tenant_id": identity.tenant_claim,
                "body_tenant_id": body_tenant_id,
                "user_id": identity.user_id,
            },
        )
        raise MismatchError(source="body")
