"""Tests for ErgoMate synchronization."""

import json

import httpx
import pytest

from school_orchestrator.audit.models import AuditResult
from school_orchestrator.auth.errors import BadRequestError, NotFoundError
from school_orchestrator.auth.permissions import Role
from school_orchestrator.core.ergomate_sync import (
    ErgoMateClient,
    SyncError,
    SyncService,
    set_ergomate_client,
)
from school_orchestrator.storage.models import StudentStatus, SyncStatus

TENANT_A = "TENANT_A"


def _client(handler) -> ErgoMateClient:
    return ErgoMateClient(
        "http://ergomate.test/",
        api_key="secret-key",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def _ok(payload=None):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload or {})

    return handler


class TestErgoMateClient:
    """Tests for ErgoMateClient."""

    @pytest.mark.asyncio
    async def test_headers_and_body(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"received": 1})

        data = await _client(handler).push_students(TENANT_A, [{"id": "S1"}])

        assert data == {"received": 1}
        [request] = seen
        assert str(request.url) == "http://ergomate.test/api/sync/students"
        assert request.headers["X-Orchestrator-Id"] == TENANT_A
        assert request.headers["X-API-Key"] == "secret-key"
        assert json.loads(request.content) == {"tenant_id": TENANT_A, "students": [{"id": "S1"}]}

    @pytest.mark.asyncio
    async def test_http_error(self):
        def handler(request):
            return httpx.Response(500)

        with pytest.raises(SyncError) as exc_info:
            await _client(handler).pull_stats(TENANT_A)

        assert exc_info.value.status_code == 502
        assert "500" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        with pytest.raises(SyncError, match="unreachable"):
            await _client(handler).push_assignment(TENANT_A, {"id": "A1"})

    @pytest.mark.asyncio
    async def test_empty_body(self):
        def handler(request):
            return httpx.Response(204)

        assert await _client(handler).push_students(TENANT_A, []) == {}


class TestSyncService:
    """Tests for SyncService."""

    @pytest.mark.asyncio
    async def test_push_students_sends_active_roster(self, seed, store):
        sent = []

        def handler(request):
            sent.append(json.loads(request.content))
            return httpx.Response(200, json={})

        store.students.update(TENANT_A, "S3", lambda s: setattr(s, "status", StudentStatus.ARCHIVED))

        log = await SyncService(store, _client(handler)).push_students(TENANT_A, "D1")

        assert {s["id"] for s in sent[0]["students"]} == {"S1", "S2"}
        assert log.status == SyncStatus.OK
        assert log.payload["items"] == 2

    @pytest.mark.asyncio
    async def test_push_failure_marks_log(self, seed, store):
        def handler(request):
            return httpx.Response(503)

        with pytest.raises(SyncError):
            await SyncService(store, _client(handler)).push_students(TENANT_A, "D1")

        [log] = store.sync_logs.select(TENANT_A)
        assert log.status == SyncStatus.ERROR
        assert log.error

    @pytest.mark.asyncio
    async def test_pull_stats_skips_unknown_rows(self, seed, store):
        payload = {
            "results": [
                {"student_id": "S1", "theme_id": "TH1", "score": 70, "ended_at": "2025-01-10T10:00:00Z"},
                {"student_id": "SB1", "theme_id": "TH1", "score": 90},
                {"theme_id": "TH1"},
            ]
        }

        log = await SyncService(store, _client(_ok(payload))).pull_stats(TENANT_A, "D1")

        assert log.payload == {"imported": 1, "skipped": 2}
        stat = store.stats.get(TENANT_A, "S1:TH1")
        assert stat.score == 70
        assert stat.last_activity_at.year == 2025

    @pytest.mark.asyncio
    async def test_pull_stats_validates_rows_before_writing(self, seed, store):
        service = SyncService(store, _client(_ok()))
        service.record_result(TENANT_A, student_id="S1", theme_id="TH1", score=60, mastery=0.5)
        payload = {
            "results": [
                {"student_id": "S1", "theme_id": "TH1", "score": "80", "mastery": "0.9"},
                {"student_id": "S1", "theme_id": "TH1", "score": 100, "mastery": "lots"},
                {"student_id": "S1", "theme_id": "TH1", "score": 100, "mastery": 1.5},
                {"student_id": "S1", "theme_id": "TH1", "score": 140},
                {"student_id": "S1", "theme_id": "TH1", "time_spent": -5},
                "not-a-row",
            ]
        }

        log = await SyncService(store, _client(_ok(payload))).pull_stats(TENANT_A, "D1")

        assert log.payload == {"imported": 1, "skipped": 5}
        stat = store.stats.get(TENANT_A, "S1:TH1")
        assert stat.attempts == 2
        assert stat.score == 70
        assert stat.mastery == 0.9
        assert isinstance(stat.mastery, float)

    @pytest.mark.parametrize("kwargs", [{"score": 101}, {"score": 50, "mastery": -0.1}])
    def test_record_result_rejects_out_of_range(self, seed, store, kwargs):
        service = SyncService(store, _client(_ok()))

        with pytest.raises(BadRequestError):
            service.record_result(TENANT_A, student_id="S1", theme_id="TH1", **kwargs)

        assert store.stats.get(TENANT_A, "S1:TH1") is None

    def test_record_result_running_average(self, seed, store):
        service = SyncService(store, _client(_ok()))

        service.record_result(TENANT_A, student_id="S1", theme_id="TH1", score=60, mastery=0.8)
        stat = service.record_result(TENANT_A, student_id="S1", theme_id="TH1", score=80)

        assert stat.attempts == 2
        assert stat.score == 70
        assert stat.mastery == 0.8

    def test_record_result_unknown_theme(self, seed, store):
        with pytest.raises(NotFoundError):
            SyncService(store, _client(_ok())).record_result(
                TENANT_A, student_id="S1", theme_id="THB1", score=10
            )

    def test_acknowledge(self, seed, store):
        assignment = SyncService(store, _client(_ok())).acknowledge(TENANT_A, "A1")

        assert assignment.status.value == "ack"
        assert assignment.ergo_ack_at is not None


class TestSyncApi:
    """Tests for /api/sync."""

    def test_push_students(self, client, headers, seed, audit_store):
        set_ergomate_client(_client(_ok()))

        response = client.post("/api/sync/students", headers=headers("D1", Role.DIRECTION))

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        [record] = audit_store.records
        assert record.action_type == "sync_students"
        assert record.details == {"items": 3}

    def test_push_failure_is_audited(self, client, headers, seed, audit_store):
        set_ergomate_client(_client(lambda request: httpx.Response(500)))

        response = client.post("/api/sync/stats", json={}, headers=headers("D1", Role.DIRECTION))

        assert response.status_code == 502
        assert response.json()["error"] == "sync_failed"
        [record] = audit_store.records
        assert record.result == AuditResult.ERROR

    def test_record_result(self, client, headers, seed, store):
        set_ergomate_client(_client(_ok()))

        response = client.post(
            "/api/sync/results",
            json={"student_id": "S2", "theme_id": "TH1", "score": 55, "time_spent": 120},
            headers=headers("U1", Role.TEACHER),
        )

        assert response.status_code == 201
        assert store.stats.get(TENANT_A, "S2:TH1").time_spent_seconds == 120

    def test_result_body_tenant_mismatch(self, client, headers, seed):
        response = client.post(
            "/api/sync/results",
            json={"tenant_id": "TENANT_B", "student_id": "S2", "theme_id": "TH1", "score": 55},
            headers=headers("U1", Role.TEACHER),
        )

        assert response.json()["error"] == "tenant_mismatch"

    def test_score_out_of_range(self, client, headers, seed):
        response = client.post(
            "/api/sync/results",
            json={"student_id": "S2", "theme_id": "TH1", "score": 150},
            headers=headers("U1", Role.TEACHER),
        )

        assert response.status_code == 422

    def test_status_requires_read(self, client, headers, seed):
        teacher = client.get("/api/sync/status", headers=headers("U1", Role.TEACHER))
        inspector = client.get("/api/sync/status", headers=headers("I1", Role.INSPECTOR))

        assert teacher.status_code == 403
        assert inspector.status_code == 200
        assert inspector.json() == {"runs": [], "total": 0}

    def test_acknowledge(self, client, headers, seed):
        response = client.post(
            "/api/sync/assignments/A1/ack", headers=headers("U1", Role.TEACHER)
        )

        assert response.json()["status"] == "ack"
