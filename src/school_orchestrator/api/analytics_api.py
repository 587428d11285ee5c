"""
Analytics API endpoints.

Student risk detection and teacher KPIs. Weights come from the analytics
configuration; teachers are limited to their own classes and their own
KPI report.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from school_orchestrator.api.security import RequestAccess, get_access, get_orchestrator_store
from school_orchestrator.auth.errors import BadRequestError, NotFoundError
from school_orchestrator.auth.permissions import Action, ResourceCategory, Role
from school_orchestrator.config.analytics import get_analytics_config
from school_orchestrator.core.risk import RiskAnalyzer
from school_orchestrator.core.teacher_kpi import KpiPeriod, TeacherKpiCalculator
from school_orchestrator.storage.memory_store import OrchestratorStore
from school_orchestrator.storage.models import RiskLevel, RiskStatus, to_dict

router = APIRouter(prefix="/api/analytics", tags=["Analytics"])

ANALYTICS_VIEW = (Action.READ, Action.EXPORT)


# ============================================================================
# Pydantic Models
# ============================================================================


class RiskReviewRequest(BaseModel):
    """Human review of a detected risk."""

    tenant_id: Optional[str] = None
    risk_id: str
    status: Optional[RiskStatus] = None
    notes: Optional[str] = Field(None, max_length=2000)


def get_risk_analyzer(
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> RiskAnalyzer:
    return RiskAnalyzer(store, get_analytics_config().risk)


def get_kpi_calculator(
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> TeacherKpiCalculator:
    return TeacherKpiCalculator(store, get_analytics_config().teacher_kpi)


# ============================================================================
# Risk
# ============================================================================


@router.get("/risk", summary="Students at risk")
async def get_risk(
    class_id: Optional[str] = Query(None),
    risk_level: Optional[RiskLevel] = Query(None),
    status: RiskStatus = Query(RiskStatus.DETECTED),
    recalculate: bool = Query(False, description="Recompute risk before listing"),
    limit: int = Query(100, ge=1, le=500),
    access: RequestAccess = Depends(get_access),
    analyzer: RiskAnalyzer = Depends(get_risk_analyzer),
    store: OrchestratorStore = Depends(get_orchestrator_store),
) -> dict:
    """Risk records, per-class heatmap and level summary."""
    await access.require_any(ResourceCategory.ANALYTICS, ANALYTICS_VIEW)

    teacher_id = access.user_id if access.ctx.role == Role.TEACHER else None

    recalculated = None
    if recalculate:
        recalculated = analyzer.recalculate(access.tenant_id, class_id)

    records = analyzer.list_risks(
        access.tenant_id,
        teacher_id=teacher_id,
        class_id=class_id,
        risk_level=risk_level,
        status=status,
        limit=limit,
    )

    rows = []
    for record in records:
        row = to_dict(record)
        student = store.students.get(access.tenant_id, record.student_id)
        row["student_name"] = student.full_name if student else None
        rows.append(row)

    response = {
        "risks": rows,
        "summary": analyzer.summary(records),
        "heatmap": analyzer.heatmap(access.tenant_id, teacher_id),
    }
    if recalculated is not None:
        response["recalculated"] = recalculated
    return response


@router.post("/risk/review", summary="Review a risk record")
async def review_risk(
    body: RiskReviewRequest,
    access: RequestAccess = Depends(get_access),
    analyzer: RiskAnalyzer = Depends(get_risk_analyzer),
) -> dict:
    await access.check_body_tenant(body.tenant_id)
    await access.require(ResourceCategory.ANALYTICS, Action.UPDATE, target_id=body.risk_id)

    if body.status is None and body.notes is None:
        raise BadRequestError("status or notes is required")

    record = analyzer.review(
        access.tenant_id, body.risk_id, access.user_id, status=body.status, notes=body.notes
    )

    await access.audit(
        "risk_reviewed", "risk", record.id, details={"status": record.status.value}
    )
    return to_dict(record)


# ============================================================================
# Teacher KPI
# ============================================================================


@router.get("/teacher-kpi", summary="Teacher KPIs")
async def get_teacher_kpi(
    teacher_id: Optional[str] = Query(None, description="One teacher; all teachers if omitted"),
    days: int = Query(30, ge=1, le=365, description="Period length in days"),
    access: RequestAccess = Depends(get_access),
    calculator: TeacherKpiCalculator = Depends(get_kpi_calculator),
) -> dict:
    await access.require_any(ResourceCategory.ANALYTICS, ANALYTICS_VIEW)

    # A teacher only sees their own report.
    if access.ctx.role == Role.TEACHER:
        if teacher_id is None:
            teacher_id = access.user_id
        await access.require_owner(
            ResourceCategory.ANALYTICS, Action.READ, teacher_id, target_id=teacher_id
        )

    period = KpiPeriod.last_days(days)

    if teacher_id is None:
        teachers = calculator.all_teachers(access.tenant_id, period)
        return {
            "teachers": teachers,
            "total": len(teachers),
            "period": period.to_dict(),
        }

    report = calculator.calculate(access.tenant_id, teacher_id, period)
    if report is None:
        raise NotFoundError("teacher", teacher_id)
    return report
