"""ErgoMate synchronization.

ErgoMate is the student-facing learning app. The orchestrator pushes
rosters and assignments to it, pulls aggregated results back, and accepts
results and acknowledgements that ErgoMate pushes on its own. Every
exchange is recorded as a SyncLog of the tenant.

Configuration:
    ORCHESTRATOR_ERGOMATE_URL: ErgoMate base URL
    ORCHESTRATOR_ERGOMATE_API_KEY: API key sent as X-API-Key
    ORCHESTRATOR_ERGOMATE_TIMEOUT: Request timeout in seconds (default 30)
"""

import os
import time
from datetime import datetime
from typing import Any, ClassVar, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from school_orchestrator.auth.errors import BadRequestError, NotFoundError, OrchestratorError
from school_orchestrator.logging.setup import get_logger
from school_orchestrator.metrics.collectors import SYNC_ERRORS, SYNC_LATENCY
from school_orchestrator.storage.memory_store import OrchestratorStore
from school_orchestrator.storage.models import (
    Assignment,
    AssignmentStatus,
    StudentStat,
    StudentStatus,
    SyncDirection,
    SyncLog,
    SyncStatus,
    as_utc,
    new_id,
    utcnow,
)

logger = get_logger(__name__)

DEFAULT_ERGOMATE_URL = "http://localhost:8081"


class SyncError(OrchestratorError):
    """ErgoMate could not be reached or rejected the exchange."""

    status_code = 502
    code = "sync_failed"
    default_message = "Synchronization with ErgoMate failed"


class ErgoMateClient:
    """HTTP client for the ErgoMate API.

    Example:
        >>> client = ErgoMateClient("https://ergomate.example", api_key="key")
        >>> await client.push_students("TENANT_A", [{"id": "stu_1", ...}])
    """

    # Shared client for connection pooling
    _http_client: ClassVar[Optional[httpx.AsyncClient]] = None

    @classmethod
    async def get_http_client(cls, timeout: float = 30.0) -> httpx.AsyncClient:
        if cls._http_client is None:
            cls._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(timeout),
                limits=httpx.Limits(max_keepalive_connections=10, max_connections=50),
            )
        return cls._http_client

    @classmethod
    async def close_http_client(cls) -> None:
        if cls._http_client is not None:
            await cls._http_client.aclose()
            cls._http_client = None

    def __init__(
        self,
        base_url: str = DEFAULT_ERGOMATE_URL,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client = http_client

    @classmethod
    def from_env(cls) -> "ErgoMateClient":
        return cls(
            base_url=os.getenv("ORCHESTRATOR_ERGOMATE_URL", DEFAULT_ERGOMATE_URL),
            api_key=os.getenv("ORCHESTRATOR_ERGOMATE_API_KEY"),
            timeout=float(os.getenv("ORCHESTRATOR_ERGOMATE_TIMEOUT", "30")),
        )

    def _headers(self, tenant_id: str) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Orchestrator-Id": tenant_id,
        }
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        tenant_id: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        client = self._client or await self.get_http_client(self.timeout)
        start = time.time()

        try:
            response = await client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(tenant_id),
                **kwargs,
            )
            response.raise_for_status()
            data = response.json() if response.content else {}
        except httpx.HTTPStatusError as e:
            SYNC_ERRORS.labels(operation=operation, error_type="http_error").inc()
            logger.error(
                "ErgoMate HTTP error",
                extra={
                    "event": "ergomate_error",
                    "tenant_id": tenant_id,
                    "operation": operation,
                    "error_type": "http_error",
                    "status_code": e.response.status_code,
                },
            )
            raise SyncError(
                f"ErgoMate returned HTTP {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            SYNC_ERRORS.labels(operation=operation, error_type="request_error").inc()
            logger.error(
                "ErgoMate request error",
                extra={
                    "event": "ergomate_error",
                    "tenant_id": tenant_id,
                    "operation": operation,
                    "error_type": "request_error",
                    "error": str(e),
                },
            )
            raise SyncError("ErgoMate is unreachable") from e

        SYNC_LATENCY.labels(operation=operation).observe(time.time() - start)
        return data

    async def push_students(
        self, tenant_id: str, students: list[dict[str, Any]]
    ) -> dict[str, Any]:
        return await self._request(
            "push_students", "POST", "/api/sync/students", tenant_id,
            json={"tenant_id": tenant_id, "students": students},
        )

    async def push_assignment(
        self, tenant_id: str, assignment: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._request(
            "push_assignment", "POST", "/api/sync/assignments", tenant_id,
            json={"tenant_id": tenant_id, "assignment": assignment},
        )

    async def pull_stats(
        self, tenant_id: str, since: Optional[datetime] = None
    ) -> dict[str, Any]:
        params = {"since": since.isoformat()} if since else None
        return await self._request(
            "pull_stats", "GET", "/api/sync/stats", tenant_id, params=params,
        )


class PulledResult(BaseModel):
    """One result row returned by ErgoMate's stats endpoint."""

    student_id: str
    theme_id: str
    score: float = Field(0, ge=0, le=100)
    time_spent: int = Field(0, ge=0)
    mastery: Optional[float] = Field(None, ge=0, le=1)
    ended_at: Optional[datetime] = None


class SyncService:
    """Tenant-scoped synchronization operations."""

    def __init__(self, store: OrchestratorStore, client: ErgoMateClient) -> None:
        self._store = store
        self._client = client

    def _start(
        self,
        tenant_id: str,
        triggered_by: Optional[str],
        direction: SyncDirection,
        sync_type: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> SyncLog:
        log = SyncLog(
            id=new_id("sync"),
            tenant_id=tenant_id,
            triggered_by=triggered_by,
            direction=direction,
            sync_type=sync_type,
            payload=payload or {},
        )
        return self._store.sync_logs.put(tenant_id, log.id, log)

    def _finish(
        self,
        tenant_id: str,
        log: SyncLog,
        status: SyncStatus,
        error: Optional[str] = None,
        **payload: Any,
    ) -> SyncLog:
        def apply(entry: SyncLog) -> None:
            entry.status = status
            entry.error = error
            entry.payload.update(payload)
            entry.ended_at = utcnow()

        return self._store.sync_logs.update(tenant_id, log.id, apply) or log

    async def push_students(self, tenant_id: str, triggered_by: str) -> SyncLog:
        """Send the active roster of the tenant to ErgoMate.

        Raises:
            SyncError: If ErgoMate fails; the log is marked as error first.
        """
        students = self._store.students.select(
            tenant_id, lambda s: s.status == StudentStatus.ACTIVE
        )
        roster = [
            {
                "id": s.id,
                "uuid_scolaire": s.uuid_scolaire,
                "firstname": s.firstname,
                "lastname": s.lastname,
                "class_id": s.class_id,
            }
            for s in students
        ]
        log = self._start(tenant_id, triggered_by, SyncDirection.PUSH, "students")

        try:
            await self._client.push_students(tenant_id, roster)
        except SyncError as e:
            self._finish(tenant_id, log, SyncStatus.ERROR, error=e.message)
            raise

        logger.info(
            "Students pushed to ErgoMate",
            extra={
                "event": "sync_students_pushed",
                "tenant_id": tenant_id,
                "count": len(roster),
            },
        )
        return self._finish(tenant_id, log, SyncStatus.OK, items=len(roster))

    async def push_assignment(
        self, tenant_id: str, triggered_by: str, assignment: Assignment
    ) -> SyncLog:
        """Send one assignment; its status becomes pushed or error.

        Raises:
            SyncError: If ErgoMate fails.
        """
        theme = self._store.themes.get(tenant_id, assignment.theme_id)
        log = self._start(
            tenant_id, triggered_by, SyncDirection.PUSH, "assignment",
            {"assignment_id": assignment.id},
        )
        self._set_assignment_status(tenant_id, assignment.id, AssignmentStatus.QUEUED)

        body = {
            "id": assignment.id,
            "title": assignment.title,
            "type": assignment.type.value,
            "mode": assignment.mode.value,
            "due_at": assignment.due_at.isoformat() if assignment.due_at else None,
            "instructions": assignment.instructions,
            "targets": [
                {"type": t.target_type, "id": t.target_id} for t in assignment.targets
            ],
            "theme": {
                "id": theme.id,
                "title": theme.title,
                "content": theme.content,
            } if theme else None,
        }

        try:
            await self._client.push_assignment(tenant_id, body)
        except SyncError as e:
            self._set_assignment_status(tenant_id, assignment.id, AssignmentStatus.ERROR)
            self._finish(tenant_id, log, SyncStatus.ERROR, error=e.message)
            raise

        self._set_assignment_status(tenant_id, assignment.id, AssignmentStatus.PUSHED)
        return self._finish(tenant_id, log, SyncStatus.OK)

    def _set_assignment_status(
        self, tenant_id: str, assignment_id: str, status: AssignmentStatus
    ) -> Optional[Assignment]:
        def apply(assignment: Assignment) -> None:
            assignment.status = status
            assignment.updated_at = utcnow()

        return self._store.assignments.update(tenant_id, assignment_id, apply)

    def acknowledge(self, tenant_id: str, assignment_id: str) -> Assignment:
        """Record ErgoMate's receipt of an assignment.

        Raises:
            NotFoundError: If the assignment does not exist in the tenant.
        """

        def apply(assignment: Assignment) -> None:
            assignment.status = AssignmentStatus.ACK
            assignment.ergo_ack_at = utcnow()
            assignment.updated_at = assignment.ergo_ack_at

        assignment = self._store.assignments.update(tenant_id, assignment_id, apply)
        if assignment is None:
            raise NotFoundError("assignment", assignment_id)
        return assignment

    def record_result(
        self,
        tenant_id: str,
        *,
        student_id: str,
        theme_id: str,
        score: float,
        time_spent_seconds: int = 0,
        mastery: Optional[float] = None,
        ended_at: Optional[datetime] = None,
    ) -> StudentStat:
        """Fold one session result into the student's stats on a theme.

        The score becomes a running average over attempts; mastery keeps its
        best value (defaulting to score / 100).

        Raises:
            BadRequestError: Score or mastery out of range.
            NotFoundError: Unknown student or theme in the tenant.
        """
        if not 0 <= score <= 100:
            raise BadRequestError("score must be between 0 and 100")
        if mastery is not None and not 0 <= mastery <= 1:
            raise BadRequestError("mastery must be between 0 and 1")
        if self._store.students.get(tenant_id, student_id) is None:
            raise NotFoundError("student", student_id)
        if self._store.themes.get(tenant_id, theme_id) is None:
            raise NotFoundError("theme", theme_id)

        new_mastery = mastery if mastery is not None else score / 100
        now = utcnow()
        activity = as_utc(ended_at) or now
        key = f"{student_id}:{theme_id}"

        def apply(stat: StudentStat) -> None:
            attempts = stat.attempts + 1
            average = (stat.score * stat.attempts + score) / attempts
            best = max(stat.mastery, new_mastery)
            stat.score, stat.attempts, stat.mastery = average, attempts, best
            stat.time_spent_seconds += time_spent_seconds
            stat.last_activity_at = activity
            stat.synced_at = now

        with self._store.lock:
            stat = self._store.stats.update(tenant_id, key, apply)
            if stat is None:
                stat = self._store.stats.put(
                    tenant_id,
                    key,
                    StudentStat(
                        tenant_id=tenant_id,
                        student_id=student_id,
                        theme_id=theme_id,
                        score=score,
                        mastery=new_mastery,
                        attempts=1,
                        time_spent_seconds=time_spent_seconds,
                        last_activity_at=activity,
                        synced_at=now,
                    ),
                )
        return stat

    async def pull_stats(
        self, tenant_id: str, triggered_by: str, since: Optional[datetime] = None
    ) -> SyncLog:
        """Fetch results from ErgoMate and fold them into local stats.

        Results for students or themes unknown to the tenant are skipped.

        Raises:
            SyncError: If ErgoMate fails.
        """
        log = self._start(tenant_id, triggered_by, SyncDirection.PULL, "stats")

        try:
            data = await self._client.pull_stats(tenant_id, since)
        except SyncError as e:
            self._finish(tenant_id, log, SyncStatus.ERROR, error=e.message)
            raise

        imported = skipped = 0
        for row in data.get("results", []):
            try:
                result = PulledResult.model_validate(row)
                self.record_result(
                    tenant_id,
                    student_id=result.student_id,
                    theme_id=result.theme_id,
                    score=result.score,
                    time_spent_seconds=result.time_spent,
                    mastery=result.mastery,
                    ended_at=result.ended_at,
                )
                imported += 1
            except (ValidationError, NotFoundError):
                skipped += 1

        logger.info(
            "Stats pulled from ErgoMate",
            extra={
                "event": "sync_stats_pulled",
                "tenant_id": tenant_id,
                "imported": imported,
                "skipped": skipped,
            },
        )
        return self._finish(
            tenant_id, log, SyncStatus.OK, imported=imported, skipped=skipped
        )

    def recent_runs(self, tenant_id: str, limit: int = 20) -> list[SyncLog]:
        logs = self._store.sync_logs.select(tenant_id)
        logs.sort(key=lambda entry: entry.started_at, reverse=True)
        return logs[:limit]


_ergomate_client: Optional[ErgoMateClient] = None


def get_ergomate_client() -> ErgoMateClient:
    """Get the global ErgoMate client configured from the environment."""
    global _ergomate_client
    if _ergomate_client is None:
        _ergomate_client = ErgoMateClient.from_env()
    return _ergomate_client


def set_ergomate_client(client: Optional[ErgoMateClient]) -> None:
    """Replace the global ErgoMate client (for testing)."""
    global _ergomate_client
    _ergomate_client = client
