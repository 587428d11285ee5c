"""Tests for the permission model."""

from types import MappingProxyType

import pytest

from school_orchestrator.auth.permissions import (
    OWNERSHIP_POLICY,
    PERMISSION_TABLE,
    Action,
    OwnershipScope,
    PermissionTableError,
    ResourceCategory,
    Role,
    is_allowed,
    is_allowed_any,
    ownership_scope,
    permission_string,
    permissions_for_role,
    validate_permission_table,
)


class TestPermissionTable:
    """Tests for the compiled grant table."""

    def test_table_is_total(self):
        """Every role x category pair has an explicit entry."""
        for role in Role:
            for category in ResourceCategory:
                assert category in PERMISSION_TABLE[role]

    def test_every_role_has_ownership_classification(self):
        for role in Role:
            assert role in OWNERSHIP_POLICY

    def test_table_is_immutable(self):
        with pytest.raises(TypeError):
            PERMISSION_TABLE[Role.TEACHER] = {}  # type: ignore[index]
        with pytest.raises(TypeError):
            PERMISSION_TABLE[Role.TEACHER][ResourceCategory.USERS] = frozenset({Action.READ})  # type: ignore[index]
        assert isinstance(PERMISSION_TABLE[Role.ADMIN][ResourceCategory.USERS], frozenset)

    def test_validate_accepts_compiled_table(self):
        validate_permission_table()

    def test_validate_reports_missing_pair(self):
        table = {role: dict(grants) for role, grants in PERMISSION_TABLE.items()}
        del table[Role.INSPECTOR][ResourceCategory.AUDIT]

        with pytest.raises(PermissionTableError) as exc_info:
            validate_permission_table(MappingProxyType(table), OWNERSHIP_POLICY)

        assert "inspector:audit" in str(exc_info.value)

    def test_validate_reports_missing_ownership(self):
        ownership = dict(OWNERSHIP_POLICY)
        del ownership[Role.STUDENT_PROXY]

        with pytest.raises(PermissionTableError) as exc_info:
            validate_permission_table(PERMISSION_TABLE, ownership)

        assert "student_proxy:ownership" in str(exc_info.value)


class TestIsAllowed:
    """Tests for is_allowed / is_allowed_any."""

    @pytest.mark.parametrize(
        "role,category,action,expected",
        [
            (Role.ADMIN, ResourceCategory.USERS, Action.DELETE, True),
            (Role.TEACHER, ResourceCategory.ASSIGNMENTS, Action.CREATE, True),
            (Role.TEACHER, ResourceCategory.USERS, Action.READ, False),
            (Role.INSPECTOR, ResourceCategory.ASSIGNMENTS, Action.CREATE, False),
            (Role.INSPECTOR, ResourceCategory.ANALYTICS, Action.EXPORT, True),
            (Role.INTERVENANT, ResourceCategory.ANALYTICS, Action.READ, False),
            (Role.STUDENT_PROXY, ResourceCategory.SESSIONS, Action.UPDATE, True),
            (Role.DIRECTION, ResourceCategory.USERS, Action.DELETE, False),
        ],
    )
    def test_grants(self, role, category, action, expected):
        assert is_allowed(role, category, action) is expected

    def test_accepts_plain_strings(self):
        assert is_allowed("teacher", "themes", "update") is True

    def test_unknown_values_are_denied(self):
        assert is_allowed("superuser", "users", "read") is False
        assert is_allowed("admin", "payroll", "read") is False
        assert is_allowed("admin", "users", "impersonate") is False

    def test_is_idempotent(self):
        results = {is_allowed(Role.TEACHER, ResourceCategory.CATALOG, Action.VALIDATE) for _ in range(5)}
        assert results == {False}

    def test_is_allowed_any(self):
        assert is_allowed_any(
            Role.INSPECTOR, ResourceCategory.CATALOG, [Action.READ, Action.VALIDATE]
        )
        assert not is_allowed_any(
            Role.INTERVENANT, ResourceCategory.CATALOG, [Action.READ, Action.VALIDATE]
        )
        assert not is_allowed_any(Role.ADMIN, ResourceCategory.CATALOG, [])


class TestHelpers:
    """Tests for ownership and grant helpers."""

    def test_ownership_scope(self):
        assert ownership_scope(Role.ADMIN) == OwnershipScope.ELEVATED
        assert ownership_scope(Role.DIRECTION) == OwnershipScope.ELEVATED
        assert ownership_scope(Role.TEACHER) == OwnershipScope.SCOPED
        assert ownership_scope("nobody") == OwnershipScope.SCOPED

    def test_permission_string(self):
        assert permission_string(ResourceCategory.ASSIGNMENTS, Action.CREATE) == "assignments:create"
        assert permission_string("audit", "read") == "audit:read"

    def test_permissions_for_role(self):
        grants = permissions_for_role(Role.INTERVENANT)

        assert "students:read" in grants
        assert "assignments:create" not in grants
        assert grants == sorted(grants)
        assert permissions_for_role("ghost") == []
