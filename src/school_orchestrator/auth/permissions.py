"""Role-Based Access Control permission model.

Roles:
    - admin: Full access within the tenant
    - direction: Management views, user and class administration
    - teacher: Own assignments and themes, read access to students/classes
    - intervenant: Read access to the classes they work with
    - inspector: Read-only access, aggregated analytics and exports
    - student_proxy: Device acting for a student in collaborative sessions

The grant table is total over role x resource category: every pair has an
explicit (possibly empty) set of actions. Anything not listed is denied.
The table is frozen at import time and validated for completeness.
"""

from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Union

from school_orchestrator.logging.setup import get_logger

logger = get_logger(__name__)


class Role(str, Enum):
    """User roles."""

    ADMIN = "admin"
    DIRECTION = "direction"
    TEACHER = "teacher"
    INTERVENANT = "intervenant"
    INSPECTOR = "inspector"
    STUDENT_PROXY = "student_proxy"


class ResourceCategory(str, Enum):
    """Resource categories guarded by RBAC."""

    USERS = "users"
    STUDENTS = "students"
    CLASSES = "classes"
    ASSIGNMENTS = "assignments"
    THEMES = "themes"
    ANALYTICS = "analytics"
    CATALOG = "catalog"
    AUDIT = "audit"
    SYNC = "sync"
    SESSIONS = "sessions"


class Action(str, Enum):
    """Actions on a resource category."""

    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    VALIDATE = "validate"
    EXPORT = "export"
    PUSH = "push"


class OwnershipScope(str, Enum):
    """How a role is treated by ownership-scoped checks."""

    ELEVATED = "elevated"  # bypasses owner comparison
    SCOPED = "scoped"  # must be the resource owner


class PermissionTableError(RuntimeError):
    """The compiled permission table is incomplete."""


R, C, A = Role, ResourceCategory, Action

_NONE: frozenset = frozenset()
_READ = frozenset({A.READ})
_CRUD = frozenset({A.READ, A.CREATE, A.UPDATE, A.DELETE})


def _grants(*actions: Action) -> frozenset:
    return frozenset(actions)


_TABLE: dict[Role, dict[ResourceCategory, frozenset]] = {
    R.ADMIN: {
        C.USERS: _grants(A.READ, A.CREATE, A.UPDATE, A.DELETE, A.EXPORT),
        C.STUDENTS: _grants(A.READ, A.CREATE, A.UPDATE, A.DELETE, A.EXPORT),
        C.CLASSES: _grants(A.READ, A.CREATE, A.UPDATE, A.DELETE, A.EXPORT),
        C.ASSIGNMENTS: _grants(A.READ, A.CREATE, A.UPDATE, A.DELETE, A.EXPORT, A.PUSH),
        C.THEMES: _grants(A.READ, A.CREATE, A.UPDATE, A.DELETE, A.VALIDATE, A.EXPORT),
        C.ANALYTICS: _grants(A.READ, A.UPDATE, A.EXPORT),
        C.CATALOG: _grants(A.READ, A.CREATE, A.UPDATE, A.DELETE, A.VALIDATE, A.EXPORT),
        C.AUDIT: _grants(A.READ, A.EXPORT),
        C.SYNC: _grants(A.READ, A.PUSH),
        C.SESSIONS: _grants(A.READ, A.CREATE, A.UPDATE, A.DELETE),
    },
    R.DIRECTION: {
        C.USERS: _grants(A.READ, A.CREATE, A.UPDATE, A.EXPORT),
        C.STUDENTS: _grants(A.READ, A.CREATE, A.UPDATE, A.DELETE, A.EXPORT),
        C.CLASSES: _grants(A.READ, A.CREATE, A.UPDATE, A.DELETE, A.EXPORT),
        C.ASSIGNMENTS: _grants(A.READ, A.CREATE, A.UPDATE, A.DELETE, A.EXPORT, A.PUSH),
        C.THEMES: _grants(A.READ, A.CREATE, A.UPDATE, A.DELETE, A.VALIDATE, A.EXPORT),
        C.ANALYTICS: _grants(A.READ, A.UPDATE, A.EXPORT),
        C.CATALOG: _grants(A.READ, A.CREATE, A.UPDATE, A.VALIDATE, A.EXPORT),
        C.AUDIT: _READ,
        C.SYNC: _grants(A.READ, A.PUSH),
        C.SESSIONS: _grants(A.READ, A.CREATE, A.UPDATE, A.DELETE),
    },
    R.TEACHER: {
        C.USERS: _NONE,
        C.STUDENTS: _READ,
        C.CLASSES: _READ,
        C.ASSIGNMENTS: _grants(A.READ, A.CREATE, A.UPDATE, A.DELETE, A.PUSH),
        C.THEMES: _CRUD,
        C.ANALYTICS: _grants(A.READ, A.UPDATE),
        C.CATALOG: _grants(A.READ, A.CREATE, A.UPDATE),
        C.AUDIT: _NONE,
        C.SYNC: _grants(A.PUSH),
        C.SESSIONS: _grants(A.READ, A.CREATE, A.UPDATE, A.DELETE),
    },
    R.INTERVENANT: {
        C.USERS: _NONE,
        C.STUDENTS: _READ,
        C.CLASSES: _READ,
        C.ASSIGNMENTS: _READ,
        C.THEMES: _READ,
        C.ANALYTICS: _NONE,
        C.CATALOG: _NONE,
        C.AUDIT: _NONE,
        C.SYNC: _NONE,
        C.SESSIONS: _READ,
    },
    R.INSPECTOR: {
        C.USERS: _NONE,
        C.STUDENTS: _READ,
        C.CLASSES: _READ,
        C.ASSIGNMENTS: _grants(A.READ, A.EXPORT),
        C.THEMES: _grants(A.READ, A.EXPORT),
        C.ANALYTICS: _grants(A.READ, A.EXPORT),
        C.CATALOG: _grants(A.READ, A.VALIDATE),
        C.AUDIT: _NONE,
        C.SYNC: _READ,
        C.SESSIONS: _NONE,
    },
    R.STUDENT_PROXY: {
        C.USERS: _NONE,
        C.STUDENTS: _NONE,
        C.CLASSES: _NONE,
        C.ASSIGNMENTS: _READ,
        C.THEMES: _READ,
        C.ANALYTICS: _NONE,
        C.CATALOG: _NONE,
        C.AUDIT: _NONE,
        C.SYNC: _NONE,
        C.SESSIONS: _grants(A.READ, A.UPDATE),
    },
}

_OWNERSHIP: dict[Role, OwnershipScope] = {
    R.ADMIN: OwnershipScope.ELEVATED,
    R.DIRECTION: OwnershipScope.ELEVATED,
    R.TEACHER: OwnershipScope.SCOPED,
    R.INTERVENANT: OwnershipScope.SCOPED,
    R.INSPECTOR: OwnershipScope.SCOPED,
    R.STUDENT_PROXY: OwnershipScope.SCOPED,
}


def _freeze(
    table: dict[Role, dict[ResourceCategory, frozenset]],
) -> Mapping[Role, Mapping[ResourceCategory, frozenset]]:
    return MappingProxyType(
        {role: MappingProxyType(dict(grants)) for role, grants in table.items()}
    )


PERMISSION_TABLE: Mapping[Role, Mapping[ResourceCategory, frozenset]] = _freeze(_TABLE)
OWNERSHIP_POLICY: Mapping[Role, OwnershipScope] = MappingProxyType(dict(_OWNERSHIP))

ROLE_DISPLAY_NAMES: Mapping[Role, str] = MappingProxyType({
    R.ADMIN: "Administrator",
    R.DIRECTION: "Director",
    R.TEACHER: "Teacher",
    R.INTERVENANT: "Contractor",
    R.INSPECTOR: "Inspector",
    R.STUDENT_PROXY: "Student device",
})


def validate_permission_table(
    table: Mapping[Role, Mapping[ResourceCategory, frozenset]] = PERMISSION_TABLE,
    ownership: Mapping[Role, OwnershipScope] = OWNERSHIP_POLICY,
) -> None:
    """Check that every role x category pair and every role's ownership
    classification is declared.

    Raises:
        PermissionTableError: Listing every missing entry.
    """
    missing: list[str] = []
    for role in Role:
        grants = table.get(role)
        if grants is None:
            missing.append(f"{role.value}:*")
            continue
        for category in ResourceCategory:
            actions = grants.get(category)
            if actions is None:
                missing.append(f"{role.value}:{category.value}")
            elif not all(isinstance(a, Action) for a in actions):
                missing.append(f"{role.value}:{category.value} (unknown action)")
        if role not in ownership:
            missing.append(f"{role.value}:ownership")

    if missing:
        raise PermissionTableError(
            "Permission table is incomplete: " + ", ".join(sorted(missing))
        )


RoleLike = Union[Role, str]
CategoryLike = Union[ResourceCategory, str]
ActionLike = Union[Action, str]


def _coerce(role: RoleLike, category: CategoryLike, action: ActionLike):
    try:
        return Role(role), ResourceCategory(category), Action(action)
    except ValueError:
        return None


def is_allowed(role: RoleLike, category: CategoryLike, action: ActionLike) -> bool:
    """Check a single grant.

    Unknown role, category or action strings are denied.
    """
    coerced = _coerce(role, category, action)
    if coerced is None:
        logger.debug(
            "Unknown RBAC lookup denied",
            extra={
                "event": "rbac_unknown_lookup",
                "role": str(role),
                "category": str(category),
                "action": str(action),
            },
        )
        return False
    r, c, a = coerced
    return a in PERMISSION_TABLE[r][c]


def is_allowed_any(
    role: RoleLike, category: CategoryLike, actions: Iterable[ActionLike]
) -> bool:
    """Check whether any one of several equivalent grants is held."""
    return any(is_allowed(role, category, action) for action in actions)


def ownership_scope(role: RoleLike) -> OwnershipScope:
    """Ownership classification of a role; unknown roles are scoped."""
    try:
        return OWNERSHIP_POLICY[Role(role)]
    except ValueError:
        return OwnershipScope.SCOPED


def permission_string(category: CategoryLike, action: ActionLike) -> str:
    """Render a grant as ``category:action``."""
    category_value = category.value if isinstance(category, Enum) else str(category)
    action_value = action.value if isinstance(action, Enum) else str(action)
    return f"{category_value}:{action_value}"


def permissions_for_role(role: RoleLike) -> list[str]:
    """List every ``category:action`` grant held by a role."""
    try:
        grants = PERMISSION_TABLE[Role(role)]
    except ValueError:
        return []
    return sorted(
        permission_string(category, action)
        for category, actions in grants.items()
        for action in actions
    )


validate_permission_table()
