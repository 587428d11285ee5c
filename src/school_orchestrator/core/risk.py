"""Student risk detection.

Each active student gets a risk score in [0, 100]: a weighted sum of five
factor scores, each on a 0-100 scale. The score is bucketed into a level
with an intervention priority, and factors above the recommendation
threshold produce remediation recommendations.

Factor scores:
    delay            min(100, overdue assignments x 20)
    abandonment      0 (abandoned sessions are not tracked)
    low_performance  max(0, 100 - average score)
    time_inefficiency 0 (not measured)
    engagement_drop  min(100, days since last activity x 5)
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from school_orchestrator.auth.errors import NotFoundError
from school_orchestrator.config.analytics import RiskConfig, RiskThresholds
from school_orchestrator.logging.setup import get_logger
from school_orchestrator.storage.memory_store import OrchestratorStore
from school_orchestrator.storage.models import (
    OPEN_RISK_STATUSES,
    RiskLevel,
    RiskRecord,
    RiskStatus,
    Student,
    StudentStatus,
    new_id,
    utcnow,
)

logger = get_logger(__name__)

FACTORS = ("delay", "abandonment", "low_performance", "time_inefficiency", "engagement_drop")

_PRIORITY = {
    RiskLevel.CRITICAL: 10,
    RiskLevel.HIGH: 7,
    RiskLevel.MEDIUM: 4,
    RiskLevel.LOW: 1,
}

_RECOMMENDATIONS = {
    "delay": {
        "type": "delay_management",
        "title": "Delay management",
        "description": "The student is accumulating overdue work. Propose a catch-up plan.",
        "actions": [
            "Schedule a one-to-one meeting",
            "Build a personalised catch-up schedule",
            "Temporarily reduce the workload",
        ],
    },
    "low_performance": {
        "type": "academic_support",
        "title": "Academic support",
        "description": "Scores are below average. Additional support is needed.",
        "actions": [
            "Offer tutoring sessions",
            "Review the fundamental concepts",
            "Adapt the difficulty of assignments",
        ],
    },
    "engagement_drop": {
        "type": "engagement_boost",
        "title": "Re-engagement",
        "description": "The student shows signs of disengagement.",
        "actions": [
            "Contact the student quickly",
            "Identify blockers or difficulties",
            "Offer more varied and playful content",
        ],
    },
}

_MONITORING = {
    "type": "monitoring",
    "title": "Ongoing monitoring",
    "description": "Keep monitoring the student's progress.",
    "actions": [
        "Keep regular follow-up",
        "Encourage good practices",
    ],
}


@dataclass(frozen=True)
class RiskInputs:
    """Raw metrics a risk assessment is computed from."""

    late_count: int = 0
    abandoned_count: int = 0
    avg_score: float = 0.0
    avg_time_spent_seconds: float = 0.0
    days_since_activity: int = 0


@dataclass(frozen=True)
class RiskAssessment:
    score: float
    level: RiskLevel
    priority: int
    factors: dict[str, float]
    recommendations: list[dict[str, Any]]


def compute_factors(inputs: RiskInputs) -> dict[str, float]:
    """Score each risk factor on a 0-100 scale."""
    return {
        "delay": float(min(100, inputs.late_count * 20)),
        "abandonment": 0.0,
        "low_performance": float(max(0.0, 100 - inputs.avg_score)),
        "time_inefficiency": 0.0,
        "engagement_drop": float(min(100, inputs.days_since_activity * 5)),
    }


def classify(score: float, thresholds: RiskThresholds) -> tuple[RiskLevel, int]:
    """Map a score to its risk level and intervention priority."""
    if score >= thresholds.critical:
        level = RiskLevel.CRITICAL
    elif score >= thresholds.high:
        level = RiskLevel.HIGH
    elif score >= thresholds.medium:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW
    return level, _PRIORITY[level]


def recommend(factors: dict[str, float], threshold: float = 50) -> list[dict[str, Any]]:
    """Build remediation recommendations for factors above the threshold."""
    recommendations = [
        dict(template)
        for factor, template in _RECOMMENDATIONS.items()
        if factors.get(factor, 0) > threshold
    ]
    return recommendations or [dict(_MONITORING)]


def assess(inputs: RiskInputs, config: RiskConfig) -> RiskAssessment:
    """Compute the full risk assessment for one student."""
    factors = compute_factors(inputs)
    weights = config.weights
    score = sum(factors[name] * getattr(weights, name) for name in FACTORS)
    level, priority = classify(score, config.thresholds)
    return RiskAssessment(
        score=round(score, 2),
        level=level,
        priority=priority,
        factors=factors,
        recommendations=recommend(factors, config.recommendation_threshold),
    )


class RiskAnalyzer:
    """Compute, store and query student risk records for one store."""

    def __init__(self, store: OrchestratorStore, config: RiskConfig) -> None:
        self._store = store
        self._config = config

    def gather_inputs(
        self, tenant_id: str, student: Student, now: Optional[datetime] = None
    ) -> RiskInputs:
        now = now or utcnow()

        stats = self._store.stats.select(
            tenant_id, lambda s: s.student_id == student.id
        )
        late_count = self._store.assignments.count(
            tenant_id,
            lambda a: a.due_at is not None and a.due_at < now and a.targets_student(student),
        )

        if not stats:
            return RiskInputs(late_count=late_count)

        last_activity = max(
            (s.last_activity_at for s in stats if s.last_activity_at is not None),
            default=None,
        )
        days = (now - last_activity).days if last_activity else 0

        return RiskInputs(
            late_count=late_count,
            avg_score=sum(s.score for s in stats) / len(stats),
            avg_time_spent_seconds=sum(s.time_spent_seconds for s in stats) / len(stats),
            days_since_activity=max(0, days),
        )

    def evaluate_student(
        self, tenant_id: str, student: Student, now: Optional[datetime] = None
    ) -> RiskRecord:
        """Compute and upsert the risk record of one student.

        A recalculation refreshes scores but keeps the review status and notes.
        """
        inputs = self.gather_inputs(tenant_id, student, now)
        assessment = assess(inputs, self._config)
        metrics = {
            "missions_late": inputs.late_count,
            "missions_abandoned": inputs.abandoned_count,
            "avg_score": round(inputs.avg_score, 2),
            "avg_time_minutes": round(inputs.avg_time_spent_seconds / 60),
            "last_activity_days_ago": inputs.days_since_activity,
        }

        def refresh(record: RiskRecord) -> None:
            record.class_id = student.class_id
            record.risk_score = assessment.score
            record.risk_level = assessment.level
            record.priority = assessment.priority
            record.factors = assessment.factors
            record.metrics = metrics
            record.recommendations = assessment.recommendations
            record.updated_at = utcnow()

        with self._store.lock:
            existing = next(
                iter(self._store.risks.select(tenant_id, lambda r: r.student_id == student.id)),
                None,
            )
            if existing is not None:
                return self._store.risks.update(tenant_id, existing.id, refresh)

            record = RiskRecord(
                id=new_id("risk"),
                tenant_id=tenant_id,
                student_id=student.id,
                class_id=student.class_id,
                risk_score=assessment.score,
                risk_level=assessment.level,
                priority=assessment.priority,
                factors=assessment.factors,
                metrics=metrics,
                recommendations=assessment.recommendations,
            )
            return self._store.risks.put(tenant_id, record.id, record)

    def recalculate(
        self,
        tenant_id: str,
        class_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """Recompute risk for every active student of the tenant.

        Returns:
            Number of students evaluated.
        """
        students = self._store.students.select(
            tenant_id,
            lambda s: s.status == StudentStatus.ACTIVE
            and (class_id is None or s.class_id == class_id),
        )
        for student in students:
            self.evaluate_student(tenant_id, student, now)

        logger.info(
            "Risk recalculation completed",
            extra={
                "event": "risk_recalculated",
                "tenant_id": tenant_id,
                "class_id": class_id,
                "students": len(students),
            },
        )
        return len(students)

    def _teacher_class_ids(self, tenant_id: str, teacher_id: str) -> set[str]:
        return {
            c.id
            for c in self._store.classes.select(tenant_id, lambda c: c.teacher_id == teacher_id)
        }

    def list_risks(
        self,
        tenant_id: str,
        *,
        teacher_id: Optional[str] = None,
        class_id: Optional[str] = None,
        risk_level: Optional[RiskLevel] = None,
        status: Optional[RiskStatus] = RiskStatus.DETECTED,
        limit: int = 100,
    ) -> list[RiskRecord]:
        """Risk records sorted by score then detection date, highest first.

        Args:
            teacher_id: Restrict to the classes this teacher teaches.
        """
        allowed_classes = (
            self._teacher_class_ids(tenant_id, teacher_id) if teacher_id else None
        )

        def keep(record: RiskRecord) -> bool:
            if allowed_classes is not None and record.class_id not in allowed_classes:
                return False
            if class_id and record.class_id != class_id:
                return False
            if risk_level and record.risk_level != risk_level:
                return False
            if status and record.status != status:
                return False
            return True

        records = self._store.risks.select(tenant_id, keep)
        records.sort(key=lambda r: (r.risk_score, r.detected_at), reverse=True)
        return records[:limit]

    def heatmap(self, tenant_id: str, teacher_id: Optional[str] = None) -> list[dict[str, Any]]:
        """Per-class risk breakdown over active students and open risks."""
        classes = self._store.classes.select(
            tenant_id, lambda c: teacher_id is None or c.teacher_id == teacher_id
        )
        open_risks = self._store.risks.select(
            tenant_id, lambda r: r.status in OPEN_RISK_STATUSES
        )

        rows = []
        for school_class in classes:
            students = {
                s.id
                for s in self._store.students.select(
                    tenant_id,
                    lambda s: s.class_id == school_class.id and s.status == StudentStatus.ACTIVE,
                )
            }
            at_risk = [r for r in open_risks if r.student_id in students]
            breakdown = {level.value: 0 for level in (
                RiskLevel.CRITICAL, RiskLevel.HIGH, RiskLevel.MEDIUM, RiskLevel.LOW
            )}
            for record in at_risk:
                breakdown[record.risk_level.value] += 1

            total = len(students)
            avg = sum(r.risk_score for r in at_risk) / len(at_risk) if at_risk else 0.0
            rows.append({
                "class_id": school_class.id,
                "class_name": school_class.name,
                "total_students": total,
                "students_at_risk": len(at_risk),
                "risk_rate": round(len(at_risk) / total * 100, 2) if total else 0.0,
                "avg_risk_score": round(avg, 2),
                "breakdown": breakdown,
            })

        rows.sort(key=lambda row: row["avg_risk_score"], reverse=True)
        return rows

    @staticmethod
    def summary(records: list[RiskRecord]) -> dict[str, int]:
        summary = {"total_at_risk": len(records)}
        for level in (RiskLevel.CRITICAL, RiskLevel.HIGH, RiskLevel.MEDIUM, RiskLevel.LOW):
            summary[level.value] = sum(1 for r in records if r.risk_level == level)
        return summary

    def review(
        self,
        tenant_id: str,
        risk_id: str,
        reviewer_id: str,
        status: Optional[RiskStatus] = None,
        notes: Optional[str] = None,
    ) -> RiskRecord:
        """Record a human review of a risk record.

        Raises:
            NotFoundError: If the record does not exist in the tenant.
        """

        def apply(record: RiskRecord) -> None:
            if status is not None:
                record.status = status
            if notes is not None:
                record.notes = notes
            record.reviewed_by = reviewer_id
            record.reviewed_at = utcnow()
            record.updated_at = record.reviewed_at

        record = self._store.risks.update(tenant_id, risk_id, apply)
        if record is None:
            raise NotFoundError("risk", risk_id)

        logger.info(
            "Risk status updated",
            extra={
                "event": "risk_reviewed",
                "tenant_id": tenant_id,
                "risk_id": risk_id,
                "status": record.status.value,
                "reviewed_by": reviewer_id,
            },
        )
        return record
