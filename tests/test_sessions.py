"""Tests for collaborative sessions."""

import time

import pytest

from school_orchestrator.auth.errors import BadRequestError, ConflictError, NotFoundError
from school_orchestrator.auth.permissions import Role
from school_orchestrator.core.collaborative import SessionService
from school_orchestrator.storage.models import SessionStatus

TENANT_A = "TENANT_A"


@pytest.fixture
def service(store):
    return SessionService(store)


@pytest.fixture
def session(service, seed):
    return service.create(TENANT_A, "U1", theme_id="TH1", title="Quiz live", max_participants=2)


class TestSessionService:
    """Tests for SessionService."""

    def test_create_copies_questions(self, session):
        assert len(session.questions) == 6
        assert len(session.session_code) == 6
        assert session.status == SessionStatus.WAITING

    def test_create_unknown_theme(self, service, seed):
        with pytest.raises(NotFoundError):
            service.create(TENANT_A, "U1", theme_id="THB1", title="x")

    def test_join_is_idempotent(self, service, session):
        service.join(TENANT_A, session.id, "S1")
        service.join(TENANT_A, session.id, "S1")

        assert session.current_participants == 1

    def test_join_full(self, service, session):
        service.join(TENANT_A, session.id, "S1")
        service.join(TENANT_A, session.id, "S2")

        with pytest.raises(ConflictError):
            service.join(TENANT_A, session.id, "S3")

    def test_join_unknown_student(self, service, session):
        with pytest.raises(NotFoundError):
            service.join(TENANT_A, session.id, "SB1")

    def test_leave_then_rejoin(self, service, session):
        service.join(TENANT_A, session.id, "S1")
        service.apply_update(TENANT_A, session.id, "S1", "leave", {})
        assert session.current_participants == 0

        service.join(TENANT_A, session.id, "S1")
        assert session.current_participants == 1
        assert session.participants["S1"].status == "connected"

    def test_score_updates_collective_score(self, service, session):
        service.join(TENANT_A, session.id, "S1")
        service.join(TENANT_A, session.id, "S2")

        service.apply_update(TENANT_A, session.id, "S1", "score", {"score": 80})
        result = service.apply_update(TENANT_A, session.id, "S2", "score", {"score": 60})

        assert result["collective_score"] == 70

    def test_collective_score_ignores_unscored(self, service, session):
        service.join(TENANT_A, session.id, "S1")
        service.join(TENANT_A, session.id, "S2")

        result = service.apply_update(TENANT_A, session.id, "S1", "score", {"score": 80})

        assert result["collective_score"] == 80
        assert session.participants["S2"].score is None

    @pytest.mark.parametrize("score", [None, "abc", [1], "nan", True])
    def test_invalid_score(self, service, session, score):
        service.join(TENANT_A, session.id, "S1")

        with pytest.raises(BadRequestError):
            service.apply_update(TENANT_A, session.id, "S1", "score", {"score": score})

        assert session.participants["S1"].score is None
        assert session.collective_score == 0.0

    @pytest.mark.parametrize("index", ["first", 1.5, -1, {"i": 0}])
    def test_invalid_question_index(self, service, session, index):
        service.join(TENANT_A, session.id, "S1")

        with pytest.raises(BadRequestError):
            service.apply_update(
                TENANT_A, session.id, "S1", "answer", {"question_index": index, "answer": "a"}
            )

        assert session.participants["S1"].answers == {}

    def test_numeric_string_question_index(self, service, session):
        service.join(TENANT_A, session.id, "S1")

        service.apply_update(
            TENANT_A, session.id, "S1", "answer", {"question_index": "2", "answer": "b"}
        )

        assert session.participants["S1"].answers[2]["answer"] == "b"

    @pytest.mark.parametrize("last_poll", [1e20, float("nan")])
    def test_poll_time_out_of_range(self, service, session, last_poll):
        service.join(TENANT_A, session.id, "S1")

        with pytest.raises(BadRequestError):
            service.poll(TENANT_A, session.id, "S1", last_poll=last_poll)

    def test_answer_requires_fields(self, service, session):
        service.join(TENANT_A, session.id, "S1")

        with pytest.raises(BadRequestError):
            service.apply_update(TENANT_A, session.id, "S1", "answer", {"answer": "a"})

    def test_non_participant_is_not_found(self, service, session):
        with pytest.raises(NotFoundError):
            service.poll(TENANT_A, session.id, "S2")

    def test_poll_reports_changes(self, service, session):
        before = time.time() - 1
        service.join(TENANT_A, session.id, "S1")
        service.apply_update(TENANT_A, session.id, "S1", "ready", {})

        state = service.poll(TENANT_A, session.id, "S1", last_poll=before)

        types = {u["type"] for u in state["updates"]}
        assert {"new_participants", "ready_status_change"} <= types
        assert state["all_ready"] is True
        assert "participants" not in state["session"]

    def test_transitions_only_move_forward(self, service, session):
        service.transition(TENANT_A, session.id, SessionStatus.ACTIVE)
        service.transition(TENANT_A, session.id, SessionStatus.COMPLETED)

        with pytest.raises(ConflictError):
            service.transition(TENANT_A, session.id, SessionStatus.ACTIVE)
        with pytest.raises(ConflictError):
            service.join(TENANT_A, session.id, "S1")

    def test_cannot_skip_active(self, service, session):
        with pytest.raises(ConflictError):
            service.transition(TENANT_A, session.id, SessionStatus.COMPLETED)


class TestSessionsApi:
    """Tests for /api/sessions."""

    def test_lifecycle(self, client, headers, seed, audit_store):
        teacher = headers("U1", Role.TEACHER)
        device = headers("P1", Role.STUDENT_PROXY)

        created = client.post(
            "/api/sessions", json={"theme_id": "TH1", "title": "Live"}, headers=teacher
        )
        assert created.status_code == 201
        session_id = created.json()["id"]
        assert "questions" not in created.json()

        joined = client.post(
            f"/api/sessions/{session_id}/join", json={"student_id": "S1"}, headers=device
        )
        assert joined.json()["current_participants"] == 1

        updated = client.post(
            f"/api/sessions/{session_id}/update",
            json={"student_id": "S1", "update_type": "answer", "data": {"question_index": 0, "answer": "a"}},
            headers=device,
        )
        assert updated.json() == {"success": True, "update_type": "answer"}

        polled = client.get(
            f"/api/sessions/{session_id}/poll?student_id=S1", headers=device
        )
        assert polled.json()["participant_count"] == 1
        assert polled.json()["participants"][0]["answers"]["0"]["answer"] == "a"

        started = client.post(f"/api/sessions/{session_id}/start", headers=teacher)
        ended = client.post(f"/api/sessions/{session_id}/end", headers=teacher)
        assert started.json()["status"] == "active"
        assert ended.json()["status"] == "completed"

        assert [r.action_type for r in audit_store.records] == [
            "session_created",
            "session_joined",
            "session_updated",
            "session_started",
            "session_ended",
        ]

    def test_student_proxy_cannot_create(self, client, headers, seed):
        response = client.post(
            "/api/sessions",
            json={"theme_id": "TH1", "title": "Live"},
            headers=headers("P1", Role.STUDENT_PROXY),
        )

        assert response.status_code == 403

    def test_only_owner_starts(self, client, headers, seed, store):
        session = SessionService(store).create(TENANT_A, "U1", theme_id="TH1", title="Live")

        response = client.post(
            f"/api/sessions/{session.id}/start", headers=headers("U2", Role.TEACHER)
        )

        assert response.status_code == 403
        assert response.json()["reason"] == "not_owner"

    def test_double_start_conflicts(self, client, headers, seed, store):
        session = SessionService(store).create(TENANT_A, "U1", theme_id="TH1", title="Live")
        teacher = headers("U1", Role.TEACHER)

        client.post(f"/api/sessions/{session.id}/start", headers=teacher)
        response = client.post(f"/api/sessions/{session.id}/start", headers=teacher)

        assert response.status_code == 409

    def test_invalid_update_type(self, client, headers, seed, store):
        session = SessionService(store).create(TENANT_A, "U1", theme_id="TH1", title="Live")

        response = client.post(
            f"/api/sessions/{session.id}/update",
            json={"student_id": "S1", "update_type": "dance"},
            headers=headers("P1", Role.STUDENT_PROXY),
        )

        assert response.status_code == 422

    def test_inspector_has_no_session_access(self, client, headers, seed):
        response = client.get("/api/sessions", headers=headers("I1", Role.INSPECTOR))

        assert response.status_code == 403

    def test_poll_rejects_out_of_range_timestamp(self, client, headers, seed, store):
        service = SessionService(store)
        session = service.create(TENANT_A, "U1", theme_id="TH1", title="Live")
        service.join(TENANT_A, session.id, "S1")

        response = client.get(
            f"/api/sessions/{session.id}/poll?student_id=S1&last_poll=1e20",
            headers=headers("P1", Role.STUDENT_PROXY),
        )

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_non_numeric_score_is_bad_request(self, client, headers, seed, store, audit_store):
        service = SessionService(store)
        session = service.create(TENANT_A, "U1", theme_id="TH1", title="Live")
        service.join(TENANT_A, session.id, "S1")

        response = client.post(
            f"/api/sessions/{session.id}/update",
            json={"student_id": "S1", "update_type": "score", "data": {"score": "abc"}},
            headers=headers("P1", Role.STUDENT_PROXY),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_input"
        assert audit_store.records == []
