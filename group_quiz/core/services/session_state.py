"""Service tracking a quiz session's lifecycle status."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
import logging

from group_quiz.constants.session_constants import SESSION_EXPIRY_HOURS
from group_quiz.core.errors import InvalidTransition, PermissionDenied
from group_quiz.core.models import QuizSession, SessionStatus, SessionType
from group_quiz.utils.dates import ensure_utc, utc_now

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.SCHEDULED: frozenset({SessionStatus.ACTIVE, SessionStatus.CANCELLED}),
    SessionStatus.ACTIVE: frozenset({SessionStatus.COMPLETED, SessionStatus.CANCELLED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.CANCELLED: frozenset(),
}

_STATUS_ORDER = {
    SessionStatus.SCHEDULED: 0,
    SessionStatus.ACTIVE: 1,
    SessionStatus.COMPLETED: 2,
    SessionStatus.CANCELLED: 2,
}


class SessionStateMachine:
    """Enforces ``scheduled -> active -> completed`` with ``cancelled`` as an absorbing state.

    Guards run before anything is changed, so callers can validate a host
    action locally and only then spend a network round-trip on it.
    """

    def __init__(self, session: QuizSession) -> None:
        self._session = session
        self._schedule_elapsed: bool = False

    @property
    def session(self) -> QuizSession:
        return self._session

    @property
    def status(self) -> SessionStatus:
        return self._session.status

    @property
    def schedule_elapsed(self) -> bool:
        return self._schedule_elapsed

    def is_host(self, user_id: str | None) -> bool:
        return bool(user_id) and user_id == self._session.created_by

    def accepts_participants(self) -> bool:
        return not self.status.is_terminal

    # --- Guards ---

    def ensure_transition(self, target: SessionStatus) -> None:
        """Raise ``InvalidTransition`` if ``target`` is not reachable from the current status."""
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            logger.warning(
                "Rejected transition for session %s: %s -> %s",
                self._session.id,
                self.status.value,
                target.value,
            )
            raise InvalidTransition(
                f"Cannot move session from {self.status.value} to {target.value}."
            )

    def ensure_host(self, actor_id: str | None, action: str) -> None:
        if not self.is_host(actor_id):
            logger.warning(
                "Rejected %s for session %s by non-host %s", action, self._session.id, actor_id
            )
            raise PermissionDenied(f"Only the session host may {action} the quiz.")

    def can_start(self, online_count: int) -> bool:
        """Time-based start eligibility: schedule elapsed and someone is online."""
        return (
            self.status is SessionStatus.SCHEDULED
            and self._schedule_elapsed
            and online_count > 0
        )

    # --- Transitions ---

    def mark_schedule_elapsed(self) -> None:
        self._schedule_elapsed = True

    def start(self, actor_id: str | None, now: datetime | None = None) -> None:
        """Explicit host start."""
        self.ensure_host(actor_id, "start")
        self._transition(SessionStatus.ACTIVE, now)

    def try_auto_start(self, online_count: int, now: datetime | None = None) -> bool:
        """Start once the countdown elapsed and at least one participant is online."""
        if not self.can_start(online_count):
            return False
        self._transition(SessionStatus.ACTIVE, now)
        return True

    def complete(self, now: datetime | None = None) -> bool:
        """Accept an end-of-quiz signal. Repeated signals are no-ops.

        Returns True only when this call changed the status.
        """
        if self.status is SessionStatus.COMPLETED:
            return False
        self._transition(SessionStatus.COMPLETED, now)
        return True

    def cancel(self, actor_id: str | None, now: datetime | None = None) -> None:
        self.ensure_host(actor_id, "cancel")
        self._transition(SessionStatus.CANCELLED, now)

    def sync(self, authoritative: QuizSession) -> bool:
        """Adopt the store's view of the session if it does not move status backwards."""
        current = self.status
        incoming = authoritative.status
        if incoming is not current and _STATUS_ORDER[incoming] <= _STATUS_ORDER[current]:
            logger.warning(
                "Ignoring status regression for session %s: %s -> %s",
                self._session.id,
                current.value,
                incoming.value,
            )
            return False
        if incoming is current:
            # Keep locally reached status timestamps if the store has none.
            authoritative = replace(
                authoritative,
                started_at=authoritative.started_at or self._session.started_at,
                ended_at=authoritative.ended_at or self._session.ended_at,
            )
        self._session = authoritative
        return True

    # --- Expiry ---

    def expiry_reference(self) -> datetime | None:
        if self._session.session_type is SessionType.INSTANT:
            return self._session.created_at
        return self._session.scheduled_at

    def is_expired(self, now: datetime | None = None) -> bool:
        """Scheduled or active sessions expire 24 hours after their reference time."""
        if self.status not in (SessionStatus.SCHEDULED, SessionStatus.ACTIVE):
            return False
        reference = self.expiry_reference()
        if reference is None:
            return False
        current = ensure_utc(now) if now else utc_now()
        return ensure_utc(reference) < current - timedelta(hours=SESSION_EXPIRY_HOURS)

    def expire(self, now: datetime | None = None) -> bool:
        """Complete an expired session. Returns True when the session was expired.

        Expiry is the one path that may complete a session straight from
        ``scheduled``: nobody started it within the expiry window.
        """
        if not self.is_expired(now):
            return False
        previous = self.status
        self._session.status = SessionStatus.COMPLETED
        self._session.ended_at = ensure_utc(now) if now else utc_now()
        logger.info(
            "Session %s expired (%s -> completed)", self._session.id, previous.value
        )
        return True

    def _transition(self, target: SessionStatus, now: datetime | None) -> None:
        self.ensure_transition(target)
        timestamp = ensure_utc(now) if now else utc_now()
        previous = self.status
        self._session.status = target
        if target is SessionStatus.ACTIVE:
            self._session.started_at = timestamp
        elif target.is_terminal:
            self._session.ended_at = timestamp
        logger.info(
            "Session %s moved %s -> %s", self._session.id, previous.value, target.value
        )
