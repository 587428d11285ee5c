"""Teacher key performance indicators.

The overall teacher score is a weighted sum of four components, each on a
0-100 scale:

- engagement: average mastery of the teacher's active students
- completion: share of the teacher's assignments pushed to (or
  acknowledged by) ErgoMate
- quality: average structural quality of the themes the teacher created
- performance: average score of the teacher's students

Engagement and performance are also reported relative to the tenant
average.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Optional

from school_orchestrator.auth.permissions import Role
from school_orchestrator.config.analytics import TeacherKpiConfig
from school_orchestrator.storage.memory_store import OrchestratorStore
from school_orchestrator.storage.models import (
    AssignmentStatus,
    IssueStatus,
    StudentStatus,
    Theme,
    UserStatus,
    utcnow,
)

KPI_ROLES = frozenset({Role.TEACHER, Role.INTERVENANT})
ACTIVE_WINDOW = timedelta(days=7)


def theme_quality(theme: Theme) -> float:
    """Structural quality of a theme from its question count."""
    count = theme.question_count
    if count > 5:
        return 100.0
    if count > 2:
        return 70.0
    return 40.0


def _avg(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


@dataclass(frozen=True)
class KpiPeriod:
    """Inclusive reporting period."""

    start: date
    end: date

    @classmethod
    def last_days(cls, days: int = 30, today: Optional[date] = None) -> "KpiPeriod":
        today = today or utcnow().date()
        return cls(start=today - timedelta(days=days), end=today)

    def contains(self, moment: Optional[datetime]) -> bool:
        if moment is None:
            return False
        return self.start <= moment.date() <= self.end

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


class TeacherKpiCalculator:
    """Compute teacher KPIs from the orchestrator store."""

    def __init__(self, store: OrchestratorStore, config: TeacherKpiConfig) -> None:
        self._store = store
        self._config = config

    def _tenant_averages(self, tenant_id: str, period: KpiPeriod) -> tuple[float, float]:
        stats = self._store.stats.select(tenant_id, lambda s: period.contains(s.synced_at))
        return (
            _avg([s.mastery for s in stats]) * 100,
            _avg([s.score for s in stats]),
        )

    def calculate(
        self,
        tenant_id: str,
        teacher_id: str,
        period: KpiPeriod,
        now: Optional[datetime] = None,
    ) -> Optional[dict[str, Any]]:
        """KPI report for one teacher.

        Returns:
            The report, or None if the user is not a teacher of the tenant.
        """
        teacher = self._store.users.get(tenant_id, teacher_id)
        if teacher is None or teacher.role not in KPI_ROLES:
            return None

        now = now or utcnow()
        store = self._store

        class_ids = {
            c.id for c in store.classes.select(tenant_id, lambda c: c.teacher_id == teacher_id)
        }
        student_ids = {
            s.id
            for s in store.students.select(
                tenant_id,
                lambda s: s.class_id in class_ids and s.status == StudentStatus.ACTIVE,
            )
        }
        student_stats = store.stats.select(tenant_id, lambda s: s.student_id in student_ids)
        active_students = {
            s.student_id
            for s in student_stats
            if s.last_activity_at is not None and s.last_activity_at >= now - ACTIVE_WINDOW
        }
        engagement = _avg([s.mastery for s in student_stats]) * 100

        assignments = store.assignments.select(
            tenant_id,
            lambda a: a.teacher_id == teacher_id and period.contains(a.created_at),
        )
        pushed = [
            a for a in assignments
            if a.status in (AssignmentStatus.PUSHED, AssignmentStatus.ACK)
        ]
        completion = len(pushed) / len(assignments) * 100 if assignments else 0.0

        themes = store.themes.select(
            tenant_id,
            lambda t: t.created_by == teacher_id and period.contains(t.created_at),
        )
        quality = _avg([theme_quality(t) for t in themes])

        period_stats = [s for s in student_stats if period.contains(s.synced_at)]
        performance = _avg([s.score for s in period_stats])
        avg_mastery = _avg([s.mastery for s in period_stats]) * 100

        open_issues = store.quality_issues.count(
            tenant_id,
            lambda q: q.teacher_id == teacher_id
            and q.status in (IssueStatus.OPEN, IssueStatus.IN_PROGRESS)
            and period.contains(q.created_at),
        )

        tenant_engagement, tenant_score = self._tenant_averages(tenant_id, period)

        weights = self._config.weights
        overall = (
            engagement * weights.engagement
            + completion * weights.completion
            + quality * weights.quality
            + performance * weights.performance
        )

        return {
            "teacher": {
                "id": teacher.id,
                "name": teacher.full_name,
                "email": teacher.email,
            },
            "engagement": {
                "total_students": len(student_ids),
                "active_students": len(active_students),
                "engagement_rate": round(engagement, 2),
                "vs_tenant_avg": round(engagement - tenant_engagement, 2),
            },
            "missions": {
                "total_created": len(assignments),
                "total_pushed": len(pushed),
                "completion_rate": round(completion, 2),
            },
            "themes": {
                "created_count": len(themes),
                "avg_quality": round(quality, 2),
                "ai_issues_count": open_issues,
            },
            "student_performance": {
                "avg_score": round(performance, 2),
                "avg_mastery": round(avg_mastery, 2),
                "vs_tenant_avg": round(performance - tenant_score, 2),
            },
            "overall_score": round(overall, 2),
            "period": period.to_dict(),
        }

    def all_teachers(
        self, tenant_id: str, period: KpiPeriod, now: Optional[datetime] = None
    ) -> list[dict[str, Any]]:
        """Summary rows for every active teacher, best overall score first."""
        teachers = self._store.users.select(
            tenant_id,
            lambda u: u.role in KPI_ROLES and u.status == UserStatus.ACTIVE,
        )
        teachers.sort(key=lambda u: (u.lastname, u.firstname))

        rows = []
        for teacher in teachers:
            kpi = self.calculate(tenant_id, teacher.id, period, now)
            if kpi is None:
                continue
            rows.append({
                "teacher_id": teacher.id,
                "teacher_name": teacher.full_name,
                "overall_score": kpi["overall_score"],
                "active_students": kpi["engagement"]["active_students"],
                "missions_created": kpi["missions"]["total_created"],
                "themes_created": kpi["themes"]["created_count"],
            })

        rows.sort(key=lambda row: row["overall_score"], reverse=True)
        return rows
