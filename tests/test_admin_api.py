"""Tests for the students, classes and users endpoints."""

import pytest

from school_orchestrator.auth.permissions import Role

TENANT_A = "TENANT_A"


class TestStudents:
    """Tests for /api/students."""

    def test_list_sorted_by_name(self, client, headers, seed):
        response = client.get("/api/students", headers=headers("U1", Role.TEACHER))

        assert response.status_code == 200
        assert [s["id"] for s in response.json()["students"]] == ["S1", "S2", "S3"]

    def test_filter_by_class(self, client, headers, seed):
        response = client.get("/api/students?class_id=C2", headers=headers())

        assert [s["id"] for s in response.json()["students"]] == ["S3"]

    def test_create(self, client, headers, seed, store):
        response = client.post(
            "/api/students",
            json={"firstname": "Lina", "lastname": "Faure", "class_id": "C1", "email": "lina@a.test"},
            headers=headers(),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["tenant_id"] == TENANT_A
        assert data["status"] == "active"
        assert store.students.get(TENANT_A, data["id"]) is not None

    def test_create_in_unknown_class(self, client, headers, seed):
        response = client.post(
            "/api/students",
            json={"firstname": "Lina", "lastname": "Faure", "class_id": "CB1"},
            headers=headers(),
        )

        assert response.status_code == 404

    def test_create_rejects_bad_email(self, client, headers, seed):
        response = client.post(
            "/api/students",
            json={"firstname": "Lina", "lastname": "Faure", "email": "not-an-email"},
            headers=headers(),
        )

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_teacher_cannot_create(self, client, headers, seed):
        response = client.post(
            "/api/students",
            json={"firstname": "Lina", "lastname": "Faure"},
            headers=headers("U1", Role.TEACHER),
        )

        assert response.status_code == 403
        assert response.json()["required_permission"] == "students:create"

    def test_update_audits_changed_fields(self, client, headers, seed, audit_store):
        response = client.patch(
            "/api/students/S1",
            json={"tenant_id": TENANT_A, "class_id": "C2"},
            headers=headers("D1", Role.DIRECTION),
        )

        assert response.status_code == 200
        assert response.json()["class_id"] == "C2"
        [record] = audit_store.records
        assert record.action_type == "student_updated"
        assert record.details == {"fields": ["class_id"]}

    def test_archive(self, client, headers, seed, store):
        response = client.delete("/api/students/S2", headers=headers())

        assert response.json() == {"success": True, "id": "S2", "status": "archived"}
        assert store.students.get(TENANT_A, "S2").status.value == "archived"

    def test_archive_unknown(self, client, headers, seed):
        response = client.delete("/api/students/nope", headers=headers())

        assert response.status_code == 404


class TestClasses:
    """Tests for /api/classes."""

    def test_teacher_sees_own_classes(self, client, headers, seed):
        response = client.get("/api/classes", headers=headers("U1", Role.TEACHER))

        classes = response.json()["classes"]
        assert [c["id"] for c in classes] == ["C1"]
        assert classes[0]["student_count"] == 2

    def test_admin_sees_all_classes(self, client, headers, seed):
        response = client.get("/api/classes", headers=headers())

        assert response.json()["total"] == 2

    def test_get_includes_students(self, client, headers, seed):
        response = client.get("/api/classes/C1", headers=headers("I1", Role.INSPECTOR))

        assert {s["id"] for s in response.json()["students"]} == {"S1", "S2"}

    def test_create_with_unknown_teacher(self, client, headers, seed):
        response = client.post(
            "/api/classes", json={"name": "4e A", "teacher_id": "UB1"}, headers=headers()
        )

        assert response.status_code == 404

    def test_update_and_archive(self, client, headers, seed, audit_store):
        updated = client.patch("/api/classes/C2", json={"level": "4e"}, headers=headers())
        archived = client.delete("/api/classes/C2", headers=headers())

        assert updated.json()["level"] == "4e"
        assert archived.json()["status"] == "archived"
        assert [r.action_type for r in audit_store.records] == ["class_updated", "class_archived"]


class TestUsers:
    """Tests for /api/users."""

    def test_me_needs_no_users_grant(self, client, headers, seed):
        response = client.get("/api/users/me", headers=headers("U1", Role.TEACHER))

        assert response.status_code == 200
        data = response.json()
        assert data["email"] == "u1@a.test"
        assert "assignments:create" in data["permissions"]
        assert "users:read" not in data["permissions"]

    def test_me_without_profile(self, client, headers, seed):
        response = client.get("/api/users/me", headers=headers("GHOST", Role.INSPECTOR))

        assert response.json()["role"] == "inspector"

    def test_teacher_cannot_list_users(self, client, headers, seed):
        response = client.get("/api/users", headers=headers("U1", Role.TEACHER))

        assert response.status_code == 403

    def test_teacher_can_read_self(self, client, headers, seed):
        response = client.get("/api/users/U1", headers=headers("U1", Role.TEACHER))

        assert response.status_code == 200

    def test_teacher_cannot_read_colleague(self, client, headers, seed):
        response = client.get("/api/users/U2", headers=headers("U1", Role.TEACHER))

        assert response.status_code == 403

    def test_list_filtered_by_role(self, client, headers, seed):
        response = client.get("/api/users?role=teacher", headers=headers())

        assert {u["id"] for u in response.json()["users"]} == {"U1", "U2"}

    def test_create_normalizes_email(self, client, headers, seed):
        response = client.post(
            "/api/users",
            json={"email": "New@A.Test", "firstname": "Nora", "lastname": "Nouvel", "role": "intervenant"},
            headers=headers(),
        )

        assert response.status_code == 201
        assert response.json()["email"] == "new@a.test"

    def test_duplicate_email_conflicts(self, client, headers, seed):
        response = client.post(
            "/api/users",
            json={"email": "U1@a.test", "firstname": "A", "lastname": "B", "role": "teacher"},
            headers=headers(),
        )

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_same_email_allowed_in_other_tenant(self, client, headers, seed):
        response = client.post(
            "/api/users",
            json={"email": "u1@a.test", "firstname": "A", "lastname": "B", "role": "teacher"},
            headers=headers("UB_ADMIN", Role.ADMIN, "TENANT_B"),
        )

        assert response.status_code == 201

    @pytest.mark.parametrize("role,expected", [(Role.ADMIN, 200), (Role.DIRECTION, 403)])
    def test_deactivate(self, client, headers, seed, role, expected):
        response = client.delete("/api/users/U2", headers=headers("X", role))

        assert response.status_code == expected
        if expected == 200:
            assert response.json()["status"] == "inactive"
