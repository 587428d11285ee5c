"""Domain entities held by the orchestrator store.

Every entity carries the tenant it belongs to. Identifiers are opaque
strings prefixed by entity kind (``stu_``, ``assign_``...).
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from school_orchestrator.auth.permissions import Role


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes; aware ones are converted to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_id(prefix: str) -> str:
    """Generate an entity identifier such as ``stu_3f9a0c1d2b4e5f60``."""
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def to_dict(entity: Any) -> dict[str, Any]:
    """Convert an entity to a JSON-compatible dictionary."""

    def convert(value: Any) -> Any:
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, dict):
            return {str(k): convert(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [convert(v) for v in value]
        return value

    return convert(asdict(entity))


# ============================================================================
# People and classes
# ============================================================================


class StudentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


@dataclass
class Student:
    id: str
    tenant_id: str
    firstname: str
    lastname: str
    class_id: Optional[str] = None
    email: Optional[str] = None
    uuid_scolaire: Optional[str] = None
    status: StudentStatus = StudentStatus.ACTIVE
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.firstname} {self.lastname}".strip()


class ClassStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


@dataclass
class SchoolClass:
    id: str
    tenant_id: str
    name: str
    level: Optional[str] = None
    teacher_id: Optional[str] = None
    status: ClassStatus = ClassStatus.ACTIVE
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass
class User:
    id: str
    tenant_id: str
    email: str
    firstname: str
    lastname: str
    role: Role
    status: UserStatus = UserStatus.ACTIVE
    last_login_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.firstname} {self.lastname}".strip()


# ============================================================================
# Pedagogical content
# ============================================================================


class ThemeStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


@dataclass
class Theme:
    id: str
    tenant_id: str
    created_by: str
    title: str
    description: str = ""
    difficulty: str = "intermediate"
    content: dict[str, Any] = field(default_factory=dict)
    status: ThemeStatus = ThemeStatus.DRAFT
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def question_count(self) -> int:
        questions = self.content.get("questions") or []
        return len(questions) if isinstance(questions, list) else 0


class AssignmentStatus(str, Enum):
    DRAFT = "draft"
    QUEUED = "queued"
    PUSHED = "pushed"
    ACK = "ack"
    ERROR = "error"


class AssignmentType(str, Enum):
    QUIZ = "quiz"
    FLASHCARDS = "flashcards"
    FICHE = "fiche"
    ANNALES = "annales"


class AssignmentMode(str, Enum):
    POST_COURS = "post-cours"
    PRE_EXAMEN = "pre-examen"
    REVISION_GENERALE = "revision-generale"


@dataclass
class AssignmentTarget:
    target_type: str  # "student" or "class"
    target_id: str


@dataclass
class Assignment:
    id: str
    tenant_id: str
    teacher_id: str
    theme_id: str
    title: str
    type: AssignmentType = AssignmentType.QUIZ
    mode: AssignmentMode = AssignmentMode.POST_COURS
    due_at: Optional[datetime] = None
    instructions: Optional[str] = None
    status: AssignmentStatus = AssignmentStatus.DRAFT
    targets: list[AssignmentTarget] = field(default_factory=list)
    payload_hash: Optional[str] = None
    ergo_ack_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def targets_student(self, student: Student) -> bool:
        for target in self.targets:
            if target.target_type == "student" and target.target_id == student.id:
                return True
            if (
                target.target_type == "class"
                and student.class_id is not None
                and target.target_id == student.class_id
            ):
                return True
        return False


@dataclass
class StudentStat:
    """Aggregated results of one student on one theme."""

    tenant_id: str
    student_id: str
    theme_id: str
    score: float = 0.0
    mastery: float = 0.0
    attempts: int = 0
    time_spent_seconds: int = 0
    last_activity_at: Optional[datetime] = None
    synced_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> str:
        return f"{self.student_id}:{self.theme_id}"


# ============================================================================
# Analytics and quality
# ============================================================================


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskStatus(str, Enum):
    DETECTED = "detected"
    IN_REVIEW = "in_review"
    REMEDIATION_PLANNED = "remediation_planned"
    RESOLVED = "resolved"


OPEN_RISK_STATUSES = frozenset(
    {RiskStatus.DETECTED, RiskStatus.IN_REVIEW, RiskStatus.REMEDIATION_PLANNED}
)


@dataclass
class RiskRecord:
    id: str
    tenant_id: str
    student_id: str
    class_id: Optional[str]
    risk_score: float
    risk_level: RiskLevel
    priority: int
    factors: dict[str, float] = field(default_factory=dict)
    metrics: dict[str, Any] = field(default_factory=dict)
    recommendations: list[dict[str, Any]] = field(default_factory=list)
    status: RiskStatus = RiskStatus.DETECTED
    notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    detected_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


class IssueSeverity(str, Enum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


SEVERITY_ORDER = {
    IssueSeverity.CRITICAL: 1,
    IssueSeverity.ERROR: 2,
    IssueSeverity.WARNING: 3,
    IssueSeverity.INFO: 4,
}


class IssueStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


@dataclass
class QualityIssue:
    id: str
    tenant_id: str
    title: str
    description: str
    issue_type: str = "other"
    severity: IssueSeverity = IssueSeverity.WARNING
    source: str = "manual"
    theme_id: Optional[str] = None
    teacher_id: Optional[str] = None
    detected_by: Optional[str] = None
    status: IssueStatus = IssueStatus.OPEN
    assigned_to: Optional[str] = None
    resolution_notes: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


# ============================================================================
# Collaborative sessions
# ============================================================================


class SessionStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass
class Participant:
    student_id: str
    joined_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    is_ready: bool = False
    score: Optional[float] = None
    answers: dict[int, dict[str, Any]] = field(default_factory=dict)
    status: str = "connected"
    left_at: Optional[datetime] = None


@dataclass
class CollaborativeSession:
    id: str
    tenant_id: str
    created_by: str
    theme_id: str
    title: str
    session_code: str
    status: SessionStatus = SessionStatus.WAITING
    max_participants: int = 30
    duration_minutes: int = 30
    current_participants: int = 0
    collective_score: float = 0.0
    questions: list[dict[str, Any]] = field(default_factory=list)
    settings: dict[str, Any] = field(default_factory=dict)
    participants: dict[str, Participant] = field(default_factory=dict)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


# ============================================================================
# Synchronization
# ============================================================================


class SyncDirection(str, Enum):
    PUSH = "push"
    PULL = "pull"


class SyncStatus(str, Enum):
    QUEUED = "queued"
    OK = "ok"
    ERROR = "error"


@dataclass
class SyncLog:
    id: str
    tenant_id: str
    triggered_by: Optional[str]
    direction: SyncDirection
    sync_type: str
    status: SyncStatus = SyncStatus.QUEUED
    payload: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    started_at: datetime = field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
