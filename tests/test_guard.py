"""Tests for the request admission pipeline."""

import pytest

from school_orchestrator.audit.logger import AuditLogger
from school_orchestrator.audit.models import AuditAction, AuditResult, RequestMetadata
from school_orchestrator.auth.errors import (
    AuthError,
    MismatchError,
    TenantError,
    TenantErrorKind,
)
from school_orchestrator.auth.guard import AccessGuard
from school_orchestrator.auth.permissions import Role
from school_orchestrator.auth.tenant import TenantResolver, get_tenant_registry

TENANT_A = "TENANT_A"
TENANT_B = "TENANT_B"
TENANT_SUSPENDED = "TENANT_SUSPENDED"


@pytest.fixture
def guard(token_service, audit_store):
    return AccessGuard(
        token_service,
        TenantResolver(get_tenant_registry()),
        AuditLogger(store=audit_store),
    )


class TestAdmit:
    """Tests for AccessGuard.admit."""

    @pytest.mark.asyncio
    async def test_admits_matching_tenant(self, guard, make_token):
        metadata = RequestMetadata(request_id="req-9")

        ctx = await guard.admit(
            f"Bearer {make_token('U1', Role.TEACHER, TENANT_A)}", TENANT_A, metadata
        )

        assert ctx.tenant_id == TENANT_A
        assert ctx.user_id == "U1"
        assert ctx.role == Role.TEACHER
        assert ctx.metadata is metadata

    @pytest.mark.asyncio
    @pytest.mark.parametrize("credential", [None, "Bearer garbage"])
    async def test_missing_tenant_wins_over_credential(self, guard, credential):
        with pytest.raises(TenantError) as exc_info:
            await guard.admit(credential, None)

        assert exc_info.value.kind == TenantErrorKind.MISSING

    @pytest.mark.asyncio
    async def test_credential_checked_before_tenant_lookup(self, guard):
        with pytest.raises(AuthError):
            await guard.admit(None, "TENANT_UNKNOWN")

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, guard, make_token):
        with pytest.raises(TenantError) as exc_info:
            await guard.admit(make_token(tenant_id=TENANT_A), "TENANT_UNKNOWN")

        assert exc_info.value.kind == TenantErrorKind.INVALID

    @pytest.mark.asyncio
    async def test_inactive_tenant_not_audited(self, guard, make_token, audit_store):
        with pytest.raises(TenantError) as exc_info:
            await guard.admit(make_token(tenant_id=TENANT_SUSPENDED), TENANT_SUSPENDED)

        assert exc_info.value.kind == TenantErrorKind.INACTIVE
        assert audit_store.records == []

    @pytest.mark.asyncio
    async def test_mismatch_audited_under_claim_tenant(self, guard, make_token, audit_store):
        with pytest.raises(MismatchError):
            await guard.admit(make_token("U1", Role.TEACHER, TENANT_A), TENANT_B)

        [record] = audit_store.records
        assert record.tenant_id == TENANT_A
        assert record.action_type == AuditAction.TENANT_MISMATCH.value
        assert record.target_id == TENANT_B
        assert record.result == AuditResult.DENIED
        assert record.details["source"] == "header"

    @pytest.mark.asyncio
    async def test_admin_cannot_cross_tenants(self, guard, make_token):
        with pytest.raises(MismatchError):
            await guard.admit(make_token("U_ADMIN", Role.ADMIN, TENANT_A), TENANT_B)


class TestCheckBodyTenant:
    """Tests for AccessGuard.check_body_tenant."""

    @pytest.mark.asyncio
    async def test_body_mismatch_audited(self, guard, make_token, audit_store):
        ctx = await guard.admit(make_token(tenant_id=TENANT_A), TENANT_A)

        with pytest.raises(MismatchError) as exc_info:
            await guard.check_body_tenant(ctx, TENANT_B)

        assert exc_info.value.source == "body"
        [record] = audit_store.records
        assert record.details["source"] == "body"
        assert record.target_id == TENANT_B

    @pytest.mark.asyncio
    async def test_body_absent_or_matching(self, guard, make_token, audit_store):
        ctx = await guard.admit(make_token(tenant_id=TENANT_A), TENANT_A)

        await guard.check_body_tenant(ctx, None)
        await guard.check_body_tenant(ctx, TENANT_A)

        assert audit_store.records == []
