"""Quality feed for pedagogical issues.

Tracks issues reported on themes (AI detections, student feedback,
structural problems) through open, in_progress and resolved states.
Issues inherit the teacher of the theme they concern; teachers only see
issues on their own themes.
"""

from typing import Any, Optional

from school_orchestrator.auth.errors import BadRequestError, NotFoundError
from school_orchestrator.logging.setup import get_logger
from school_orchestrator.storage.memory_store import OrchestratorStore
from school_orchestrator.storage.models import (
    SEVERITY_ORDER,
    IssueSeverity,
    IssueStatus,
    QualityIssue,
    new_id,
    utcnow,
)

logger = get_logger(__name__)


class QualityFeed:
    """Create, update and list quality issues of a tenant."""

    def __init__(self, store: OrchestratorStore) -> None:
        self._store = store

    def create_issue(
        self,
        tenant_id: str,
        detected_by: str,
        *,
        title: str,
        description: str,
        theme_id: Optional[str] = None,
        issue_type: str = "other",
        severity: IssueSeverity = IssueSeverity.WARNING,
        source: str = "manual",
    ) -> QualityIssue:
        """Open a new issue.

        Raises:
            BadRequestError: If title or description is empty.
            NotFoundError: If the theme does not exist in the tenant.
        """
        if not title.strip() or not description.strip():
            raise BadRequestError("title and description are required")

        teacher_id = None
        if theme_id:
            theme = self._store.themes.get(tenant_id, theme_id)
            if theme is None:
                raise NotFoundError("theme", theme_id)
            teacher_id = theme.created_by

        issue = QualityIssue(
            id=new_id("qfeed"),
            tenant_id=tenant_id,
            title=title,
            description=description,
            issue_type=issue_type,
            severity=IssueSeverity(severity),
            source=source,
            theme_id=theme_id,
            teacher_id=teacher_id,
            detected_by=detected_by,
        )
        self._store.quality_issues.put(tenant_id, issue.id, issue)

        logger.info(
            "Quality issue created",
            extra={
                "event": "quality_issue_created",
                "tenant_id": tenant_id,
                "issue_id": issue.id,
                "theme_id": theme_id,
                "issue_type": issue_type,
            },
        )
        return issue

    def update_issue(
        self,
        tenant_id: str,
        issue_id: str,
        updated_by: str,
        *,
        status: Optional[IssueStatus] = None,
        assigned_to: Optional[str] = None,
        resolution_notes: Optional[str] = None,
    ) -> QualityIssue:
        """Change status, assignee or resolution notes.

        Resolving an issue stamps ``resolved_at`` and ``resolved_by``.

        Raises:
            BadRequestError: If nothing is to be updated.
            NotFoundError: If the issue does not exist in the tenant.
        """
        if status is None and not assigned_to and not resolution_notes:
            raise BadRequestError("No updates provided")

        def apply(issue: QualityIssue) -> None:
            now = utcnow()
            if status is not None:
                issue.status = IssueStatus(status)
                if issue.status == IssueStatus.RESOLVED:
                    issue.resolved_at = now
                    issue.resolved_by = updated_by
            if assigned_to:
                issue.assigned_to = assigned_to
            if resolution_notes:
                issue.resolution_notes = resolution_notes
            issue.updated_at = now

        issue = self._store.quality_issues.update(tenant_id, issue_id, apply)
        if issue is None:
            raise NotFoundError("issue", issue_id)

        logger.info(
            "Quality issue updated",
            extra={
                "event": "quality_issue_updated",
                "tenant_id": tenant_id,
                "issue_id": issue_id,
                "status": issue.status.value,
            },
        )
        return issue

    def list_issues(
        self,
        tenant_id: str,
        *,
        teacher_id: Optional[str] = None,
        theme_id: Optional[str] = None,
        status: Optional[IssueStatus] = None,
        severity: Optional[IssueSeverity] = None,
        issue_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[QualityIssue], int, dict[str, int]]:
        """Filtered issues, most severe then newest first.

        Returns:
            (page of issues, total matching, summary counts)
        """

        def keep(issue: QualityIssue) -> bool:
            if teacher_id and issue.teacher_id != teacher_id:
                return False
            if theme_id and issue.theme_id != theme_id:
                return False
            if status and issue.status != status:
                return False
            if severity and issue.severity != severity:
                return False
            if issue_type and issue.issue_type != issue_type:
                return False
            return True

        issues = self._store.quality_issues.select(tenant_id, keep)
        issues.sort(key=lambda i: i.created_at, reverse=True)
        issues.sort(key=lambda i: SEVERITY_ORDER[i.severity])

        limit = min(limit, 100)
        return issues[offset:offset + limit], len(issues), self.summarize(issues)

    @staticmethod
    def summarize(issues: list[QualityIssue]) -> dict[str, Any]:
        summary: dict[str, Any] = {"total": len(issues)}
        for status in (IssueStatus.OPEN, IssueStatus.IN_PROGRESS, IssueStatus.RESOLVED):
            summary[status.value] = sum(1 for i in issues if i.status == status)
        for severity in (IssueSeverity.CRITICAL, IssueSeverity.ERROR, IssueSeverity.WARNING):
            summary[severity.value] = sum(1 for i in issues if i.severity == severity)
        return summary
