"""In-memory authoritative store for sessions, presence rows and results."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
from threading import Lock
from uuid import uuid4

from group_quiz.core.errors import (
    AuthenticationRequired,
    InvalidTransition,
    PermissionDenied,
    SessionNotFound,
    SessionUnavailable,
)
from group_quiz.core.models import (
    AnswerRecord,
    ParticipantsView,
    QuizResult,
    QuizSession,
    SessionParticipant,
    SessionStatus,
    SessionType,
)
from group_quiz.core.services.session_state import SessionStateMachine
from group_quiz.utils.dates import ensure_utc, utc_now


@dataclass(slots=True)
class UserProfile:
    """Denormalized identity fields copied onto presence rows."""

    user_id: str
    username: str | None = None
    email: str | None = None
    avatar: str | None = None


class PresenceStore:
    """Thread-safe store behind the reference persistence service.

    Presence is soft: rows are created on the first join and only ever
    flipped between online and offline afterwards. Results are append-only.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._lock = Lock()
        self._clock = clock
        self._users: dict[str, UserProfile] = {}
        self._tokens: dict[str, str] = {}
        self._sessions: dict[str, QuizSession] = {}
        self._participants: dict[str, dict[str, SessionParticipant]] = {}
        self._results: dict[str, list[QuizResult]] = {}

    # --- Identity ---

    def register_user(
        self,
        user_id: str,
        username: str | None = None,
        email: str | None = None,
        avatar: str | None = None,
    ) -> UserProfile:
        cleaned = user_id.strip()
        if not cleaned:
            raise ValueError("User ID must not be empty.")
        with self._lock:
            profile = UserProfile(user_id=cleaned, username=username, email=email, avatar=avatar)
            self._users[cleaned] = profile
            return profile

    def issue_token(self, user_id: str) -> str:
        with self._lock:
            if user_id not in self._users:
                raise ValueError(f"Unknown user {user_id!r}.")
            token = uuid4().hex
            self._tokens[token] = user_id
            return token

    def authenticate(self, token: str | None) -> UserProfile:
        with self._lock:
            user_id = self._tokens.get(token or "")
            if user_id is None:
                raise AuthenticationRequired("Authentication required")
            return self._users[user_id]

    # --- Sessions ---

    def create_session(
        self,
        creator_id: str,
        title: str,
        scheduled_at: datetime | None = None,
        session_type: SessionType = SessionType.SCHEDULED,
        video_url: str | None = None,
    ) -> QuizSession:
        cleaned_title = title.strip()
        if not cleaned_title:
            raise ValueError("Session title must not be empty.")
        if session_type is SessionType.SCHEDULED and scheduled_at is None:
            raise ValueError("Scheduled sessions need a scheduled start time.")
        if session_type is SessionType.INSTANT:
            scheduled_at = None
        with self._lock:
            now = self._clock()
            instant = session_type is SessionType.INSTANT
            session = QuizSession(
                id=uuid4().hex,
                title=cleaned_title,
                created_by=creator_id,
                join_token=uuid4().hex[:12],
                session_type=session_type,
                video_url=video_url,
                scheduled_at=ensure_utc(scheduled_at) if scheduled_at else None,
                created_at=now,
                # Instant sessions go live on creation.
                status=SessionStatus.ACTIVE if instant else SessionStatus.SCHEDULED,
                started_at=now if instant else None,
            )
            self._sessions[session.id] = session
            self._participants[session.id] = {}
            self._results[session.id] = []
            return replace(session)

    def get_session(self, session_id: str) -> QuizSession:
        with self._lock:
            return replace(self._require_session(session_id))

    def set_status(self, session_id: str, actor_id: str, status: SessionStatus) -> QuizSession:
        """Apply a status change.

        Only the host may cancel or complete. Participants may also move a
        session to active, but only through the time-based start rule.
        """
        with self._lock:
            session = self._require_session(session_id)
            machine = SessionStateMachine(session)
            now = self._clock()
            if status is SessionStatus.ACTIVE:
                if session.status is SessionStatus.ACTIVE:
                    # Idempotent start: already started
                    self._require_actor(session, actor_id)
                    return replace(session)
                if machine.is_host(actor_id):
                    machine.start(actor_id, now)
                else:
                    self._start_if_due(session, actor_id, now)
            elif status is SessionStatus.CANCELLED:
                machine.cancel(actor_id, now)
            elif status is SessionStatus.COMPLETED:
                machine.ensure_host(actor_id, "complete")
                machine.complete(now)
            else:
                raise InvalidTransition("Sessions cannot return to scheduled.")
            return replace(machine.session)

    def _start_if_due(self, session: QuizSession, actor_id: str, now: datetime) -> None:
        """Time-based start: the scheduled time passed and someone is online."""
        self._require_actor(session, actor_id)
        machine = SessionStateMachine(session)
        machine.ensure_transition(SessionStatus.ACTIVE)
        if session.scheduled_at is not None and ensure_utc(session.scheduled_at) <= now:
            machine.mark_schedule_elapsed()
        online = sum(1 for row in self._participants[session.id].values() if row.is_online)
        if not machine.try_auto_start(online, now):
            raise PermissionDenied(
                "Only the session host may start the quiz before its scheduled time."
            )

    def _require_actor(self, session: QuizSession, actor_id: str) -> None:
        if actor_id != session.created_by and actor_id not in self._participants[session.id]:
            raise PermissionDenied("Access denied - not a session participant")

    def check_expired(self, session_id: str) -> bool:
        with self._lock:
            session = self._require_session(session_id)
            return SessionStateMachine(session).expire(self._clock())

    # --- Presence ---

    def participants(self, session_id: str) -> ParticipantsView:
        with self._lock:
            self._require_session(session_id)
            return ParticipantsView.from_participants(list(self._participants[session_id].values()))

    def join(self, session_id: str, user_id: str) -> SessionParticipant:
        with self._lock:
            session = self._require_session(session_id)
            if session.status.is_terminal:
                raise SessionUnavailable("Session is no longer available")
            rows = self._participants[session_id]
            now = self._clock()
            existing = rows.get(user_id)
            if existing is None:
                profile = self._users.get(user_id, UserProfile(user_id=user_id))
                row = SessionParticipant(
                    session_id=session_id,
                    user_id=user_id,
                    joined_at=now,
                    is_online=True,
                    last_seen=now,
                    email=profile.email,
                    username=profile.username,
                    avatar=profile.avatar,
                )
            else:
                row = replace(existing, is_online=True, last_seen=now)
            rows[user_id] = row
            return row

    def leave(self, session_id: str, user_id: str) -> SessionParticipant | None:
        with self._lock:
            self._require_session(session_id)
            rows = self._participants[session_id]
            existing = rows.get(user_id)
            if existing is None:
                return None
            row = replace(existing, is_online=False, last_seen=self._clock())
            rows[user_id] = row
            return row

    # --- Results ---

    def submit_result(
        self,
        session_id: str,
        user_id: str,
        score: int,
        correct_answers: int,
        total_questions: int,
        time_taken_seconds: int | None = None,
        answers: list[AnswerRecord] | None = None,
    ) -> QuizResult:
        """Append a completed attempt; completes the session once every participant submitted."""
        with self._lock:
            session = self._require_session(session_id)
            if session.status not in (SessionStatus.ACTIVE, SessionStatus.COMPLETED):
                raise SessionUnavailable(
                    f"Session is {session.status.value} and does not accept results"
                )
            profile = self._users.get(user_id, UserProfile(user_id=user_id))
            result = QuizResult(
                id=uuid4().hex,
                session_id=session_id,
                user_id=user_id,
                score=score,
                correct_answers=correct_answers,
                total_questions=total_questions,
                time_taken_seconds=time_taken_seconds,
                completed_at=self._clock(),
                answers=tuple(answers or ()),
                username=profile.username,
                email=profile.email,
            )
            self._results[session_id].append(result)
            self._complete_if_everyone_submitted(session)
            return result

    def results(self, session_id: str) -> list[QuizResult]:
        with self._lock:
            self._require_session(session_id)
            return list(self._results[session_id])

    def _complete_if_everyone_submitted(self, session: QuizSession) -> None:
        if session.status is not SessionStatus.ACTIVE:
            return
        participant_ids = set(self._participants[session.id])
        if not participant_ids:
            return
        submitted = {r.user_id for r in self._results[session.id]}
        if participant_ids <= submitted:
            SessionStateMachine(session).complete(self._clock())

    def _require_session(self, session_id: str) -> QuizSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session {session_id} not found")
        return session

    def require_member(self, session_id: str, user_id: str) -> None:
        """Raise ``PermissionDenied`` unless ``user_id`` may act in the session."""
        with self._lock:
            self._require_actor(self._require_session(session_id), user_id)
