"""Collaborative sessions.

A lightweight poll/patch state machine: a teacher opens a session on a
theme, student devices join and poll for changes, then report readiness,
answers and scores. Session status only moves forward:
waiting -> active -> completed.
"""

import math
import secrets
import string
from datetime import datetime, timezone
from typing import Any, Optional

from school_orchestrator.auth.errors import BadRequestError, ConflictError, NotFoundError
from school_orchestrator.logging.setup import get_logger
from school_orchestrator.storage.memory_store import OrchestratorStore
from school_orchestrator.storage.models import (
    CollaborativeSession,
    Participant,
    SessionStatus,
    new_id,
    to_dict,
    utcnow,
)

logger = get_logger(__name__)

UPDATE_TYPES = ("ready", "answer", "score", "leave")

_TRANSITIONS = {
    SessionStatus.WAITING: SessionStatus.ACTIVE,
    SessionStatus.ACTIVE: SessionStatus.COMPLETED,
}

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def _session_code(length: int = 6) -> str:
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))


def _poll_time(last_poll: float) -> datetime:
    try:
        return datetime.fromtimestamp(float(last_poll), tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        raise BadRequestError(f"Invalid last_poll: {last_poll}") from None


def _question_index(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        index = value
    elif isinstance(value, str) and value.strip().isdigit():
        index = int(value)
    else:
        raise BadRequestError("question_index must be an integer")
    if index < 0:
        raise BadRequestError("question_index must not be negative")
    return index


def _score(value: Any) -> float:
    if value is None or isinstance(value, bool):
        raise BadRequestError("score is required and must be a number")
    try:
        score = float(value)
    except (TypeError, ValueError):
        raise BadRequestError("score must be a number") from None
    if not math.isfinite(score):
        raise BadRequestError("score must be a finite number")
    return score


class SessionService:
    """Operations on the collaborative sessions of a tenant."""

    def __init__(self, store: OrchestratorStore) -> None:
        self._store = store

    def get(self, tenant_id: str, session_id: str) -> CollaborativeSession:
        session = self._store.sessions.get(tenant_id, session_id)
        if session is None:
            raise NotFoundError("session", session_id)
        return session

    def create(
        self,
        tenant_id: str,
        created_by: str,
        *,
        theme_id: str,
        title: str,
        max_participants: int = 30,
        duration_minutes: int = 30,
        settings: Optional[dict[str, Any]] = None,
    ) -> CollaborativeSession:
        """Open a session on a theme; questions are copied from the theme.

        Raises:
            NotFoundError: If the theme does not exist in the tenant.
        """
        theme = self._store.themes.get(tenant_id, theme_id)
        if theme is None:
            raise NotFoundError("theme", theme_id)

        session = CollaborativeSession(
            id=new_id("collab"),
            tenant_id=tenant_id,
            created_by=created_by,
            theme_id=theme_id,
            title=title,
            session_code=_session_code(),
            max_participants=max_participants,
            duration_minutes=duration_minutes,
            questions=list(theme.content.get("questions") or []),
            settings=settings or {},
        )
        self._store.sessions.put(tenant_id, session.id, session)

        logger.info(
            "Collaborative session created",
            extra={
                "event": "session_created",
                "tenant_id": tenant_id,
                "session_id": session.id,
                "theme_id": theme_id,
            },
        )
        return session

    def join(self, tenant_id: str, session_id: str, student_id: str) -> CollaborativeSession:
        """Add a student to a session that has not completed.

        Joining twice is a no-op for a connected participant and a
        reconnection for one who left.

        Raises:
            NotFoundError: Unknown session or student.
            ConflictError: Session completed or full.
        """
        if self._store.students.get(tenant_id, student_id) is None:
            raise NotFoundError("student", student_id)

        with self._store.lock:
            session = self.get(tenant_id, session_id)
            if session.status == SessionStatus.COMPLETED:
                raise ConflictError("Session is already completed")

            now = utcnow()
            participant = session.participants.get(student_id)
            if participant is not None and participant.status == "connected":
                return session
            if session.current_participants >= session.max_participants:
                raise ConflictError("Session is full")

            if participant is None:
                session.participants[student_id] = Participant(student_id=student_id)
            else:
                participant.status = "connected"
                participant.left_at = None
                participant.updated_at = now
            session.current_participants += 1

        logger.info(
            "Student joined session",
            extra={
                "event": "session_joined",
                "tenant_id": tenant_id,
                "session_id": session_id,
                "student_id": student_id,
            },
        )
        return session

    def _participant(self, session: CollaborativeSession, student_id: str) -> Participant:
        participant = session.participants.get(student_id)
        if participant is None:
            raise NotFoundError("participant", student_id)
        return participant

    def poll(
        self,
        tenant_id: str,
        session_id: str,
        student_id: str,
        last_poll: Optional[float] = None,
    ) -> dict[str, Any]:
        """Session state plus the changes since ``last_poll`` (epoch seconds).

        Raises:
            NotFoundError: Unknown session or non-participant.
        """
        with self._store.lock:
            session = self.get(tenant_id, session_id)
            self._participant(session, student_id)

            participants = sorted(session.participants.values(), key=lambda p: p.joined_at)
            updates: list[dict[str, Any]] = []

            if last_poll is not None:
                since = _poll_time(last_poll)

                joined = [p for p in participants if p.joined_at > since]
                if joined:
                    updates.append({
                        "type": "new_participants",
                        "data": [
                            {"student_id": p.student_id, "joined_at": p.joined_at.isoformat()}
                            for p in joined
                        ],
                    })

                if session.updated_at > since:
                    updates.append({
                        "type": "session_status_change",
                        "data": {
                            "status": session.status.value,
                            "start_time": session.start_time.isoformat()
                            if session.start_time else None,
                        },
                    })

                changed = [p for p in participants if p.updated_at > since]
                if changed:
                    updates.append({
                        "type": "ready_status_change",
                        "data": [
                            {"student_id": p.student_id, "is_ready": p.is_ready}
                            for p in changed
                        ],
                    })

            state = to_dict(session)
            state.pop("participants")

            return {
                "timestamp": int(utcnow().timestamp()),
                "session": state,
                "participants": [to_dict(p) for p in participants],
                "updates": updates,
                "participant_count": len(participants),
                "all_ready": all(p.is_ready for p in participants),
            }

    def apply_update(
        self,
        tenant_id: str,
        session_id: str,
        student_id: str,
        update_type: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """Apply one participant update (ready, answer, score or leave).

        Raises:
            NotFoundError: Unknown session or non-participant.
            BadRequestError: Unknown update type or missing fields.
        """
        if update_type not in UPDATE_TYPES:
            raise BadRequestError(f"Invalid update_type: {update_type}")

        with self._store.lock:
            session = self.get(tenant_id, session_id)
            participant = self._participant(session, student_id)
            now = utcnow()
            result: dict[str, Any] = {"update_type": update_type}

            if update_type == "ready":
                participant.is_ready = bool(payload.get("is_ready", True))
                participant.updated_at = now
                result["is_ready"] = participant.is_ready

            elif update_type == "answer":
                question_index = payload.get("question_index")
                answer = payload.get("answer")
                if question_index is None or answer is None:
                    raise BadRequestError("question_index and answer are required")
                participant.answers[_question_index(question_index)] = {
                    "answer": answer,
                    "timestamp": now.isoformat(),
                }
                participant.updated_at = now

            elif update_type == "score":
                participant.score = _score(payload.get("score"))
                participant.updated_at = now
                scores = [
                    p.score for p in session.participants.values() if p.score is not None
                ]
                session.collective_score = sum(scores) / len(scores)
                result["collective_score"] = session.collective_score

            else:  # leave
                if participant.status != "disconnected":
                    participant.status = "disconnected"
                    participant.left_at = now
                    participant.updated_at = now
                    session.current_participants = max(0, session.current_participants - 1)
                result["current_participants"] = session.current_participants

        return result

    def transition(
        self, tenant_id: str, session_id: str, target: SessionStatus
    ) -> CollaborativeSession:
        """Move the session to the next status.

        Raises:
            NotFoundError: Unknown session.
            ConflictError: If ``target`` is not the next status.
        """
        target = SessionStatus(target)
        with self._store.lock:
            session = self.get(tenant_id, session_id)
            if _TRANSITIONS.get(session.status) != target:
                raise ConflictError(
                    f"Cannot move session from {session.status.value} to {target.value}"
                )
            now = utcnow()
            session.status = target
            if target == SessionStatus.ACTIVE:
                session.start_time = now
            else:
                session.end_time = now
            session.updated_at = now

        logger.info(
            "Session status changed",
            extra={
                "event": "session_status_changed",
                "tenant_id": tenant_id,
                "session_id": session_id,
                "status": target.value,
            },
        )
        return session
