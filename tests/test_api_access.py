"""End-to-end tests for tenant isolation and authorization over HTTP."""

import pytest

from school_orchestrator.api.security import reset_access_guard
from school_orchestrator.audit.logger import AuditLogger, set_audit_logger
from school_orchestrator.audit.models import AuditResult
from school_orchestrator.auth.permissions import Role

TENANT_A = "TENANT_A"
TENANT_B = "TENANT_B"


class TestTenantPresence:
    """A request without a tenant identifier is refused first."""

    @pytest.mark.parametrize("authorization", [None, "Bearer not-a-token"])
    def test_missing_tenant_regardless_of_credential(self, client, authorization):
        headers = {"Authorization": authorization} if authorization else {}

        response = client.get("/api/students", headers=headers)

        assert response.status_code == 400
        assert response.json()["error"] == "missing_tenant_id"

    def test_blank_header_is_missing(self, client, headers):
        response = client.get("/api/students", headers=headers(header_tenant="  "))

        assert response.status_code == 400
        assert response.json()["error"] == "missing_tenant_id"

    def test_query_parameter_fallback_on_get(self, client, headers, seed):
        request_headers = headers()
        del request_headers["X-Orchestrator-Id"]

        response = client.get(f"/api/students?tenant_id={TENANT_A}", headers=request_headers)

        assert response.status_code == 200
        assert response.json()["total"] == 3

    def test_query_parameter_ignored_on_writes(self, client, headers):
        request_headers = headers()
        del request_headers["X-Orchestrator-Id"]

        response = client.post(
            f"/api/classes?tenant_id={TENANT_A}",
            json={"name": "4e C"},
            headers=request_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "missing_tenant_id"


class TestAuthentication:
    """Credential failures answer 401."""

    def test_missing_credential(self, client):
        response = client.get("/api/students", headers={"X-Orchestrator-Id": TENANT_A})

        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"
        assert response.headers["www-authenticate"] == "Bearer"

    def test_expired_credential(self, client, make_token):
        token = make_token(ttl_seconds=-5)

        response = client.get(
            "/api/students",
            headers={"Authorization": f"Bearer {token}", "X-Orchestrator-Id": TENANT_A},
        )

        assert response.status_code == 401


class TestTenantResolution:
    """Unknown and inactive tenants are refused without audit."""

    def test_unknown_tenant(self, client, headers):
        response = client.get("/api/students", headers=headers(tenant_id="TENANT_NOPE"))

        assert response.status_code == 403
        assert response.json()["error"] == "invalid_tenant"

    @pytest.mark.parametrize("tenant_id", ["TENANT_SUSPENDED", "TENANT_ARCHIVED"])
    def test_inactive_tenant(self, client, headers, audit_store, tenant_id):
        response = client.get("/api/students", headers=headers(tenant_id=tenant_id))

        assert response.status_code == 403
        assert response.json()["error"] == "tenant_inactive"
        assert audit_store.records == []


class TestReconciliation:
    """A credential can only be used in its own tenant."""

    def test_header_mismatch_is_audited_once(self, client, headers, seed, store, audit_store):
        response = client.post(
            "/api/classes",
            json={"name": "Intrusion"},
            headers=headers("U_ADMIN", Role.ADMIN, TENANT_A, header_tenant=TENANT_B),
        )

        assert response.status_code == 403
        assert response.json()["error"] == "tenant_mismatch"
        assert store.classes.count(TENANT_B) == 1

        [record] = audit_store.records
        assert record.tenant_id == TENANT_A
        assert record.action_type == "tenant_mismatch"
        assert record.result == AuditResult.DENIED

    def test_body_mismatch(self, client, headers, seed, store, audit_store):
        response = client.post(
            "/api/students",
            json={"tenant_id": TENANT_B, "firstname": "Eve", "lastname": "Intrus"},
            headers=headers(),
        )

        assert response.status_code == 403
        assert response.json()["error"] == "tenant_mismatch"
        assert store.students.count(TENANT_A) == 3
        assert store.students.count(TENANT_B) == 1
        [record] = audit_store.records
        assert record.details["source"] == "body"

    def test_body_mismatch_reported_before_permission(self, client, headers, seed):
        response = client.post(
            "/api/users",
            json={
                "tenant_id": TENANT_B,
                "email": "x@b.test",
                "firstname": "X",
                "lastname": "Y",
                "role": "teacher",
            },
            headers=headers("U1", Role.TEACHER),
        )

        assert response.json()["error"] == "tenant_mismatch"


class TestPermissions:
    """Permission denials are 403 forbidden and audited."""

    def test_inspector_cannot_create_assignments(self, client, headers, seed, store, audit_store):
        response = client.post(
            "/api/assignments",
            json={"theme_id": "TH1", "title": "Contrôle"},
            headers=headers("I1", Role.INSPECTOR),
        )

        assert response.status_code == 403
        body = response.json()
        assert body["error"] == "forbidden"
        assert body["reason"] == "permission_denied"
        assert body["required_permission"] == "assignments:create"
        assert body["your_role"] == "inspector"
        assert store.assignments.count(TENANT_A) == 2

        [record] = audit_store.records
        assert record.action_type == "permission_denied"
        assert record.actor_user_id == "I1"

    def test_teacher_cannot_update_other_teachers_assignment(
        self, client, headers, seed, store, audit_store
    ):
        response = client.patch(
            "/api/assignments/A2",
            json={"title": "Hijacked"},
            headers=headers("U1", Role.TEACHER),
        )

        assert response.status_code == 403
        assert response.json()["reason"] == "not_owner"
        assert store.assignments.get(TENANT_A, "A2").title == "Quiz volcans"
        [record] = audit_store.records
        assert record.action_type == "ownership_denied"
        assert record.target_id == "A2"

    def test_direction_bypasses_ownership(self, client, headers, seed):
        response = client.patch(
            "/api/assignments/A2",
            json={"title": "Revu par la direction"},
            headers=headers("D1", Role.DIRECTION),
        )

        assert response.status_code == 200
        assert response.json()["title"] == "Revu par la direction"

    def test_successful_mutation_is_audited(self, client, headers, seed, audit_store):
        response = client.post(
            "/api/classes", json={"name": "3e D"}, headers=headers()
        )

        assert response.status_code == 201
        [record] = audit_store.records
        assert record.action_type == "class_created"
        assert record.result == AuditResult.SUCCESS
        assert record.target_id == response.json()["id"]

    @pytest.mark.parametrize(
        "method,path,payload,permission",
        [
            ("patch", "/api/themes/NOPE", {"title": "x"}, "themes:update"),
            ("delete", "/api/themes/NOPE", None, "themes:delete"),
            ("patch", "/api/assignments/NOPE", {"title": "x"}, "assignments:update"),
            ("patch", "/api/assignments/NOPE/status", {"status": "queued"}, "assignments:update"),
            ("delete", "/api/assignments/NOPE", None, "assignments:delete"),
            ("post", "/api/assignments/NOPE/push", None, "assignments:push"),
            ("post", "/api/sessions/NOPE/start", None, "sessions:update"),
            ("post", "/api/sessions/NOPE/end", None, "sessions:update"),
        ],
    )
    def test_permission_checked_before_lookup(
        self, client, headers, seed, audit_store, method, path, payload, permission
    ):
        """An unknown id does not turn a missing grant into not_found."""
        kwargs = {"json": payload} if payload is not None else {}

        response = getattr(client, method)(path, headers=headers("I1", Role.INSPECTOR), **kwargs)

        assert response.status_code == 403
        assert response.json()["required_permission"] == permission
        [record] = audit_store.records
        assert record.result == AuditResult.DENIED
        assert record.target_id == "NOPE"

    def test_unknown_id_with_grant_is_not_found(self, client, headers, seed, audit_store):
        response = client.delete("/api/assignments/NOPE", headers=headers("U1", Role.TEACHER))

        assert response.status_code == 404
        assert audit_store.records == []

    def test_denials_recorded_with_audit_disabled(self, client, headers, seed, audit_store):
        set_audit_logger(AuditLogger(enabled=False))
        reset_access_guard()

        denied = client.post(
            "/api/assignments",
            json={"theme_id": "TH1", "title": "Contrôle"},
            headers=headers("I1", Role.INSPECTOR),
        )
        created = client.post("/api/classes", json={"name": "3e D"}, headers=headers())

        assert denied.status_code == 403
        assert created.status_code == 201
        [record] = audit_store.records
        assert record.result == AuditResult.DENIED
        assert record.actor_user_id == "I1"


class TestIsolation:
    """Data of another tenant is invisible, not forbidden."""

    def test_other_tenant_entity_is_not_found(self, client, headers, seed):
        response = client.get("/api/students/SB1", headers=headers())

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_listing_is_tenant_scoped(self, client, headers, seed):
        response = client.get(
            "/api/students", headers=headers("UB1", Role.TEACHER, TENANT_B)
        )

        assert [s["id"] for s in response.json()["students"]] == ["SB1"]

    def test_cannot_target_other_tenant_student(self, client, headers, seed):
        response = client.post(
            "/api/assignments",
            json={
                "theme_id": "TH1",
                "title": "Cross",
                "targets": [{"type": "student", "id": "SB1"}],
            },
            headers=headers("U1", Role.TEACHER),
        )

        assert response.status_code == 404


class TestUnscopedEndpoints:
    """Health and metrics need no tenant."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_metrics(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "orchestrator_" in response.text

    def test_unknown_route(self, client):
        response = client.get("/api/nothing-here", headers={"X-Orchestrator-Id": TENANT_A})

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_request_id_header(self, client):
        response = client.get("/health")

        assert len(response.headers["x-request-id"]) == 8
