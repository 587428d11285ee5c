"""Pytest fixtures and configuration."""

import os

# Configure the service before any school_orchestrator import.
os.environ["ORCHESTRATOR_JWT_SECRET"] = "test-secret-for-the-orchestrator-suite-0123456789"
os.environ["ORCHESTRATOR_AUDIT_STORE"] = "memory"
os.environ["ORCHESTRATOR_RATE_LIMIT_ENABLED"] = "false"
os.environ["ORCHESTRATOR_LOG_LEVEL"] = "WARNING"
os.environ.pop("ORCHESTRATOR_TENANT_CONFIG_PATH", None)
os.environ.pop("ORCHESTRATOR_ANALYTICS_CONFIG_PATH", None)

from datetime import timedelta
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from school_orchestrator.api.security import reset_access_guard
from school_orchestrator.audit.logger import set_audit_logger
from school_orchestrator.audit.store import MemoryAuditStore, set_audit_store
from school_orchestrator.auth.identity import get_token_service, reset_token_service
from school_orchestrator.auth.permissions import Role
from school_orchestrator.auth.tenant import (
    Tenant,
    TenantStatus,
    get_tenant_registry,
    reset_tenant_registry,
)
from school_orchestrator.config.analytics import reset_analytics_config
from school_orchestrator.core.ergomate_sync import set_ergomate_client
from school_orchestrator.storage.memory_store import get_store, reset_store
from school_orchestrator.storage.models import (
    Assignment,
    AssignmentTarget,
    SchoolClass,
    Student,
    Theme,
    User,
    utcnow,
)

TENANT_A = "TENANT_A"
TENANT_B = "TENANT_B"
TENANT_SUSPENDED = "TENANT_SUSPENDED"
TENANT_ARCHIVED = "TENANT_ARCHIVED"


def _questions(count: int) -> dict:
    return {
        "questions": [
            {"id": f"q{i}", "text": f"Question {i}", "choices": ["a", "b"], "answer": "a"}
            for i in range(count)
        ]
    }


@pytest.fixture
def audit_store():
    """Fresh in-memory audit store installed as the global store."""
    return MemoryAuditStore()


@pytest.fixture(autouse=True)
def reset_state(audit_store):
    """Reset every process-wide singleton around each test."""
    reset_token_service()
    reset_tenant_registry()
    reset_access_guard()
    reset_store()
    reset_analytics_config()
    set_audit_logger(None)
    set_audit_store(audit_store)
    set_ergomate_client(None)

    registry = get_tenant_registry()
    registry.add_tenant(Tenant(tenant_id=TENANT_A, name="Institut A"))
    registry.add_tenant(Tenant(tenant_id=TENANT_B, name="Lycee B"))
    registry.add_tenant(
        Tenant(tenant_id=TENANT_SUSPENDED, name="Suspended", status=TenantStatus.SUSPENDED)
    )
    registry.add_tenant(
        Tenant(tenant_id=TENANT_ARCHIVED, name="Archived", status=TenantStatus.ARCHIVED)
    )

    yield

    reset_access_guard()
    reset_store()
    set_audit_logger(None)
    set_audit_store(None)
    set_ergomate_client(None)


@pytest.fixture
def token_service():
    return get_token_service()


@pytest.fixture
def make_token(token_service):
    """Issue a token: make_token(user_id, role, tenant_id)."""

    def _make(user_id: str = "U_ADMIN", role: Role = Role.ADMIN, tenant_id: str = TENANT_A, **kwargs):
        return token_service.issue(user_id, role, tenant_id, **kwargs)

    return _make


@pytest.fixture
def headers(make_token):
    """Build request headers.

    ``headers(user_id, role, tenant_id, header_tenant=...)``; the header tenant
    defaults to the credential tenant.
    """

    def _headers(
        user_id: str = "U_ADMIN",
        role: Role = Role.ADMIN,
        tenant_id: str = TENANT_A,
        header_tenant: str | None = None,
    ) -> dict:
        return {
            "Authorization": f"Bearer {make_token(user_id, role, tenant_id)}",
            "X-Orchestrator-Id": header_tenant if header_tenant is not None else tenant_id,
        }

    return _headers


@pytest.fixture
def store():
    return get_store()


@pytest.fixture
def client():
    """Create a test client for the orchestrator app."""
    from school_orchestrator.api.routes import app

    return TestClient(app)


@pytest.fixture
def seed(store):
    """Two tenants with users, classes, students, themes and assignments.

    TENANT_A: teachers U1 (class C1, theme TH1, assignment A1) and U2
    (class C2, theme TH2, assignment A2). TENANT_B mirrors a smaller set.
    """
    now = utcnow()
    a, b = TENANT_A, TENANT_B

    users = [
        User(id="U_ADMIN", tenant_id=a, email="admin@a.test", firstname="Ada", lastname="Admin", role=Role.ADMIN),
        User(id="U1", tenant_id=a, email="u1@a.test", firstname="Alice", lastname="Martin", role=Role.TEACHER),
        User(id="U2", tenant_id=a, email="u2@a.test", firstname="Bruno", lastname="Petit", role=Role.TEACHER),
        User(id="D1", tenant_id=a, email="d1@a.test", firstname="Dora", lastname="Durand", role=Role.DIRECTION),
        User(id="I1", tenant_id=a, email="i1@a.test", firstname="Ines", lastname="Roux", role=Role.INSPECTOR),
        User(id="UB1", tenant_id=b, email="ub1@b.test", firstname="Bea", lastname="Blanc", role=Role.TEACHER),
    ]
    for user in users:
        store.users.put(user.tenant_id, user.id, user)

    classes = [
        SchoolClass(id="C1", tenant_id=a, name="6e A", level="6e", teacher_id="U1"),
        SchoolClass(id="C2", tenant_id=a, name="5e B", level="5e", teacher_id="U2"),
        SchoolClass(id="CB1", tenant_id=b, name="Seconde 1", level="2nde", teacher_id="UB1"),
    ]
    for school_class in classes:
        store.classes.put(school_class.tenant_id, school_class.id, school_class)

    students = [
        Student(id="S1", tenant_id=a, firstname="Leo", lastname="Bernard", class_id="C1"),
        Student(id="S2", tenant_id=a, firstname="Mia", lastname="Garcia", class_id="C1"),
        Student(id="S3", tenant_id=a, firstname="Noe", lastname="Lefebvre", class_id="C2"),
        Student(id="SB1", tenant_id=b, firstname="Zoe", lastname="Moreau", class_id="CB1"),
    ]
    for student in students:
        store.students.put(student.tenant_id, student.id, student)

    themes = [
        Theme(id="TH1", tenant_id=a, created_by="U1", title="Fractions", content=_questions(6)),
        Theme(id="TH2", tenant_id=a, created_by="U2", title="Volcans", content=_questions(1)),
        Theme(id="THB1", tenant_id=b, created_by="UB1", title="Optique", content=_questions(3)),
    ]
    for theme in themes:
        store.themes.put(theme.tenant_id, theme.id, theme)

    assignments = [
        Assignment(
            id="A1", tenant_id=a, teacher_id="U1", theme_id="TH1", title="Quiz fractions",
            due_at=now - timedelta(days=2),
            targets=[AssignmentTarget(target_type="class", target_id="C1")],
        ),
        Assignment(
            id="A2", tenant_id=a, teacher_id="U2", theme_id="TH2", title="Quiz volcans",
            targets=[AssignmentTarget(target_type="student", target_id="S3")],
        ),
        Assignment(
            id="AB1", tenant_id=b, teacher_id="UB1", theme_id="THB1", title="Quiz optique",
        ),
    ]
    for assignment in assignments:
        store.assignments.put(assignment.tenant_id, assignment.id, assignment)

    return SimpleNamespace(
        users={u.id: u for u in users},
        classes={c.id: c for c in classes},
        students={s.id: s for s in students},
        themes={t.id: t for t in themes},
        assignments={x.id: x for x in assignments},
    )
