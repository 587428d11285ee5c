"""
Administration API endpoints.

Students, classes and users of the caller's tenant. Deletions are soft:
students and classes are archived, users are deactivated.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from school_orchestrator.api.security import RequestAccess, get_access, get_orchestrator_store
from school_orchestrator.auth.errors import ConflictError, NotFoundError
from school_orchestrator.auth.permissions import Action, ResourceCategory, Role
from school_orchestrator.storage.memory_store import OrchestratorStore
from school_orchestrator.storage.models import (
    ClassStatus,
    SchoolClass,
    Student,
    StudentStatus,
    User,
    UserStatus,
    new_id,
    to_dict,
    utcnow,
)

router = APIRouter(prefix="/api", tags=["Administration"])

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ============================================================================
# Pydantic Models
# ============================================================================


class StudentCreate(BaseModel):
    """Create a student."""

    tenant_id: Optional[str] = None
    firstname: str = Field(..., min_length=1, max_length=100)
    lastname: str = Field(..., min_length=1, max_length=100)
    class_id: Optional[str] = None
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN)
    uuid_scolaire: Optional[str] = None


class StudentUpdate(BaseModel):
    """Partial update of a student."""

    tenant_id: Optional[str] = None
    firstname: Optional[str] = Field(None, min_length=1, max_length=100)
    lastname: Optional[str] = Field(None, min_length=1, max_length=100)
    class_id: Optional[str] = None
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN)
    uuid_scolaire: Optional[str] = None
    status: Optional[StudentStatus] = None


class ClassCreate(BaseModel):
    tenant_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    level: Optional[str] = None
    teacher_id: Optional[str] = None


class ClassUpdate(BaseModel):
    tenant_id: Optional[str] = None
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    level: Optional[str] = None
    teacher_id: Optional[str] = None


class UserCreate(BaseModel):
    tenant_id: Optional[str] = None
    email: str = Field(..., pattern=EMAIL_PATTERN)
    firstname: str = Field(..., min_length=1, max_length=100)
    lastname: str = Field(..., min_length=1, max_length=100)
    role: Role


class UserUpdate(BaseModel):
    tenant_id: Optional[str] = None
    firstname: Optional[str] = Field(None, min_length=1, max_length=100)
    lastname: Optional[str] = Field(None, min_length=1, max_length=100)
    role: Optional[Role] = None
    status: Optional[UserStatus] = None


def _changes(body: BaseModel) -> dict:
    """Fields explicitly set in a partial update, minus the tenant marker."""
    changes = body.model_dump(exclude_unset=True)
    changes.pop("tenant_id", None)
    return changes


def _require_class(store: OrchestratorStore, tenant_id: str, class_id: Optional[str]) -> None:
    if class_id and store.classes.get(tenant_id, class_id) is None:
        raise NotFoundError("class", class_id)


def _require_teacher(store: OrchestratorStore, tenant_id: str, user_id: Optional[str]) -> None:
    if user_id and store.users.get(tenant_id, user_id) is None:
        raise NotFoundError("user", user_id)


# ============================================================================
# Students
# ============================================================================


@router.get("/students", summary="List students")
async def list_students(
    class_id: Optional[str] = Query(None),
    status: Optional[StudentStatus] = Query(None),
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.require(ResourceCategory.STUDENTS, Action.READ)

    students = store.students.select(
        access.tenant_id,
        lambda s: (class_id is None or s.class_id == class_id)
        and (status is None or s.status == status),
    )
    students.sort(key=lambda s: (s.lastname, s.firstname))
    return {"students": [to_dict(s) for s in students], "total": len(students)}


@router.get("/students/{student_id}", summary="Get a student")
async def get_student(
    student_id: str,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.require(ResourceCategory.STUDENTS, Action.READ, target_id=student_id)

    student = store.students.get(access.tenant_id, student_id)
    if student is None:
        raise NotFoundError("student", student_id)
    return to_dict(student)


@router.post("/students", status_code=201, summary="Create a student")
async def create_student(
    body: StudentCreate,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.check_body_tenant(body.tenant_id)
    await access.require(ResourceCategory.STUDENTS, Action.CREATE)
    _require_class(store, access.tenant_id, body.class_id)

    student = Student(
        id=new_id("stu"),
        tenant_id=access.tenant_id,
        firstname=body.firstname,
        lastname=body.lastname,
        class_id=body.class_id,
        email=body.email,
        uuid_scolaire=body.uuid_scolaire,
    )
    store.students.put(access.tenant_id, student.id, student)

    await access.audit("student_created", "student", student.id)
    return to_dict(student)


@router.patch("/students/{student_id}", summary="Update a student")
async def update_student(
    student_id: str,
    body: StudentUpdate,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.check_body_tenant(body.tenant_id)
    await access.require(ResourceCategory.STUDENTS, Action.UPDATE, target_id=student_id)

    changes = _changes(body)
    _require_class(store, access.tenant_id, changes.get("class_id"))

    def apply(student: Student) -> None:
        for name, value in changes.items():
            setattr(student, name, value)
        student.updated_at = utcnow()

    student = store.students.update(access.tenant_id, student_id, apply)
    if student is None:
        raise NotFoundError("student", student_id)

    await access.audit(
        "student_updated", "student", student_id, details={"fields": sorted(changes)}
    )
    return to_dict(student)


@router.delete("/students/{student_id}", summary="Archive a student")
async def archive_student(
    student_id: str,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.require(ResourceCategory.STUDENTS, Action.DELETE, target_id=student_id)

    def apply(student: Student) -> None:
        student.status = StudentStatus.ARCHIVED
        student.updated_at = utcnow()

    student = store.students.update(access.tenant_id, student_id, apply)
    if student is None:
        raise NotFoundError("student", student_id)

    await access.audit("student_archived", "student", student_id)
    return {"success": True, "id": student_id, "status": student.status.value}


# ============================================================================
# Classes
# ============================================================================


@router.get("/classes", summary="List classes")
async def list_classes(
    status: Optional[ClassStatus] = Query(None),
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.require(ResourceCategory.CLASSES, Action.READ)

    # Teachers only see the classes they teach.
    teacher_id = access.user_id if access.ctx.role == Role.TEACHER else None

    classes = store.classes.select(
        access.tenant_id,
        lambda c: (teacher_id is None or c.teacher_id == teacher_id)
        and (status is None or c.status == status),
    )
    classes.sort(key=lambda c: c.name)

    rows = []
    for school_class in classes:
        row = to_dict(school_class)
        row["student_count"] = store.students.count(
            access.tenant_id,
            lambda s: s.class_id == school_class.id and s.status == StudentStatus.ACTIVE,
        )
        rows.append(row)
    return {"classes": rows, "total": len(rows)}


@router.get("/classes/{class_id}", summary="Get a class")
async def get_class(
    class_id: str,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.require(ResourceCategory.CLASSES, Action.READ, target_id=class_id)

    school_class = store.classes.get(access.tenant_id, class_id)
    if school_class is None:
        raise NotFoundError("class", class_id)

    students = store.students.select(access.tenant_id, lambda s: s.class_id == class_id)
    data = to_dict(school_class)
    data["students"] = [to_dict(s) for s in students]
    return data


@router.post("/classes", status_code=201, summary="Create a class")
async def create_class(
    body: ClassCreate,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.check_body_tenant(body.tenant_id)
    await access.require(ResourceCategory.CLASSES, Action.CREATE)
    _require_teacher(store, access.tenant_id, body.teacher_id)

    school_class = SchoolClass(
        id=new_id("class"),
        tenant_id=access.tenant_id,
        name=body.name,
        level=body.level,
        teacher_id=body.teacher_id,
    )
    store.classes.put(access.tenant_id, school_class.id, school_class)

    await access.audit("class_created", "class", school_class.id)
    return to_dict(school_class)


@router.patch("/classes/{class_id}", summary="Update a class")
async def update_class(
    class_id: str,
    body: ClassUpdate,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.check_body_tenant(body.tenant_id)
    await access.require(ResourceCategory.CLASSES, Action.UPDATE, target_id=class_id)

    changes = _changes(body)
    _require_teacher(store, access.tenant_id, changes.get("teacher_id"))

    def apply(school_class: SchoolClass) -> None:
        for name, value in changes.items():
            setattr(school_class, name, value)
        school_class.updated_at = utcnow()

    school_class = store.classes.update(access.tenant_id, class_id, apply)
    if school_class is None:
        raise NotFoundError("class", class_id)

    await access.audit("class_updated", "class", class_id, details={"fields": sorted(changes)})
    return to_dict(school_class)


@router.delete("/classes/{class_id}", summary="Archive a class")
async def archive_class(
    class_id: str,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.require(ResourceCategory.CLASSES, Action.DELETE, target_id=class_id)

    def apply(school_class: SchoolClass) -> None:
        school_class.status = ClassStatus.ARCHIVED
        school_class.updated_at = utcnow()

    school_class = store.classes.update(access.tenant_id, class_id, apply)
    if school_class is None:
        raise NotFoundError("class", class_id)

    await access.audit("class_archived", "class", class_id)
    return {"success": True, "id": class_id, "status": school_class.status.value}


# ============================================================================
# Users
# ============================================================================


@router.get("/users/me", summary="Current user")
async def get_current_user(
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    """Profile and grants of the caller. Needs no ``users`` grant."""
    user = store.users.get(access.tenant_id, access.user_id)
    data = to_dict(user) if user is not None else {
        "id": access.user_id,
        "tenant_id": access.tenant_id,
        "role": access.ctx.role.value,
    }
    data["permissions"] = access.permissions()
    return data


@router.get("/users", summary="List users")
async def list_users(
    role: Optional[Role] = Query(None),
    status: Optional[UserStatus] = Query(None),
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.require(ResourceCategory.USERS, Action.READ)

    users = store.users.select(
        access.tenant_id,
        lambda u: (role is None or u.role == role) and (status is None or u.status == status),
    )
    users.sort(key=lambda u: (u.lastname, u.firstname))
    return {"users": [to_dict(u) for u in users], "total": len(users)}


@router.get("/users/{user_id}", summary="Get a user")
async def get_user(
    user_id: str,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    if user_id != access.user_id:
        await access.require(ResourceCategory.USERS, Action.READ, target_id=user_id)

    user = store.users.get(access.tenant_id, user_id)
    if user is None:
        raise NotFoundError("user", user_id)
    return to_dict(user)


@router.post("/users", status_code=201, summary="Create a user")
async def create_user(
    body: UserCreate,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.check_body_tenant(body.tenant_id)
    await access.require(ResourceCategory.USERS, Action.CREATE)

    email = body.email.lower()
    with store.lock:
        if store.users.count(access.tenant_id, lambda u: u.email == email):
            raise ConflictError("A user with this email already exists")
        user = User(
            id=new_id("user"),
            tenant_id=access.tenant_id,
            email=email,
            firstname=body.firstname,
            lastname=body.lastname,
            role=body.role,
        )
        store.users.put(access.tenant_id, user.id, user)

    await access.audit("user_created", "user", user.id, details={"role": user.role.value})
    return to_dict(user)


@router.patch("/users/{user_id}", summary="Update a user")
async def update_user(
    user_id: str,
    body: UserUpdate,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.check_body_tenant(body.tenant_id)
    await access.require(ResourceCategory.USERS, Action.UPDATE, target_id=user_id)

    changes = _changes(body)

    def apply(user: User) -> None:
        for name, value in changes.items():
            setattr(user, name, value)
        user.updated_at = utcnow()

    user = store.users.update(access.tenant_id, user_id, apply)
    if user is None:
        raise NotFoundError("user", user_id)

    await access.audit("user_updated", "user", user_id, details={"fields": sorted(changes)})
    return to_dict(user)


@router.delete("/users/{user_id}", summary="Deactivate a user")
async def deactivate_user(
    user_id: str,
    access: RequestAccess = Depends(get_access),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    await access.require(ResourceCategory.USERS, Action.DELETE, target_id=user_id)

    def apply(user: User) -> None:
        user.status = UserStatus.INACTIVE
        user.updated_at = utcnow()

    user = store.users.update(access.tenant_id, user_id, apply)
    if user is None:
        raise NotFoundError("user", user_id)

    await access.audit("user_deactivated", "user", user_id)
    return {"success": True, "id": user_id, "status": user.status.value}
