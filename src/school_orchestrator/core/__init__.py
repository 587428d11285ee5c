"""Core domain services of the School Orchestrator."""

from school_orchestrator.core.collaborative import SessionService
from school_orchestrator.core.ergomate_sync import ErgoMateClient, SyncError, SyncService
from school_orchestrator.core.quality_feed import QualityFeed
from school_orchestrator.core.risk import RiskAnalyzer, assess
from school_orchestrator.core.teacher_kpi import KpiPeriod, TeacherKpiCalculator

__all__ = [
    "ErgoMateClient",
    "KpiPeriod",
    "QualityFeed",
    "RiskAnalyzer",
    "SessionService",
    "SyncError",
    "SyncService",
    "TeacherKpiCalculator",
    "assess",
]
