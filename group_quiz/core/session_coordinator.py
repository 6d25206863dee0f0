"""Facade coordinating one session's lifecycle, presence and results for a local user."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
import logging
from typing import Protocol

from group_quiz.constants.session_constants import NOTICE_QUIZ_STARTING
from group_quiz.core.config import EngineConfig
from group_quiz.core.errors import GroupQuizError, SessionUnavailable, TransientNetworkFailure
from group_quiz.core.models import (
    AnswerRecord,
    Leaderboard,
    ParticipantsView,
    QuizResult,
    QuizSession,
    SessionStatus,
)
from group_quiz.core.notifications import LoggingNotifier, Notifier
from group_quiz.core.services.countdown import CountdownSynchronizer, TickCallback
from group_quiz.core.services.leaderboard import LeaderboardAggregator
from group_quiz.core.services.participant_reconciler import ParticipantReconciler, PresenceApi
from group_quiz.core.services.poll_scheduler import PollScheduler
from group_quiz.core.services.session_state import SessionStateMachine
from group_quiz.utils.dates import utc_now

logger = logging.getLogger(__name__)


class SessionApi(PresenceApi, Protocol):
    """Full set of persistence operations used by the coordinator."""

    async def fetch_session(self, session_id: str) -> QuizSession: ...

    async def update_status(self, session_id: str, status: SessionStatus) -> QuizSession: ...

    async def check_expired(self, session_id: str) -> bool: ...

    async def fetch_results(self, session_id: str) -> list[QuizResult]: ...

    async def submit_result(
        self,
        session_id: str,
        score: int,
        correct_answers: int,
        total_questions: int,
        time_taken_seconds: int | None = None,
        answers: list[AnswerRecord] | None = None,
    ) -> QuizResult: ...


class SessionCoordinator:
    """Facade for session services: reconciler, state machine, countdown, poller and leaderboard."""

    def __init__(
        self,
        api: SessionApi,
        session_id: str,
        user_id: str | None,
        config: EngineConfig | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utc_now,
        on_countdown_tick: TickCallback | None = None,
    ) -> None:
        self._api = api
        self._session_id = session_id
        self._user_id = user_id
        self._config = config or EngineConfig()
        self._notifier = notifier or LoggingNotifier()
        self._clock = clock
        self._on_countdown_tick = on_countdown_tick

        # Services
        self._reconciler = ParticipantReconciler(api, notifier=self._notifier, clock=clock)
        self._aggregator = LeaderboardAggregator(self._config.result_policy)
        self._poller = PollScheduler(
            refresh=self.refresh_participants,
            interval=self._poll_interval,
            manual_refresh_enabled=self._config.manual_refresh_enabled,
            name=f"participants-poll-{session_id}",
        )
        self._machine: SessionStateMachine | None = None
        self._countdown: CountdownSynchronizer | None = None
        self._closed: bool = False

    # --- Read side ---

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def session(self) -> QuizSession:
        return self._require_machine().session

    @property
    def status(self) -> SessionStatus:
        return self._require_machine().status

    @property
    def participants(self) -> ParticipantsView:
        return self._reconciler.view(self._session_id)

    @property
    def reconciler(self) -> ParticipantReconciler:
        return self._reconciler

    @property
    def poller(self) -> PollScheduler:
        return self._poller

    @property
    def countdown(self) -> CountdownSynchronizer | None:
        return self._countdown

    @property
    def is_joined(self) -> bool:
        return self._reconciler.is_joined(self._session_id, self._user_id)

    @property
    def is_host(self) -> bool:
        return self._require_machine().is_host(self._user_id)

    def seconds_remaining(self) -> int | None:
        """Seconds until the scheduled start, or None when no countdown runs."""
        if self._countdown is None:
            return None
        return self._countdown.seconds_remaining()

    # --- Lifecycle ---

    async def open(self) -> QuizSession:
        """Load the session, take the first participant snapshot and start timers."""
        if self._closed:
            raise RuntimeError("Session coordinator was closed.")
        session = await self._api.fetch_session(self._session_id)
        self._machine = SessionStateMachine(session)
        try:
            await self._reconciler.fetch(self._session_id)
        except TransientNetworkFailure:
            # The poller retries on its next cycle.
            logger.warning("Initial participant fetch for session %s failed", self._session_id)
        if session.status is SessionStatus.SCHEDULED and session.scheduled_at is not None:
            self._countdown = CountdownSynchronizer(
                scheduled_at=session.scheduled_at,
                on_elapsed=self._on_schedule_elapsed,
                on_tick=self._on_countdown_tick,
                clock=self._clock,
                tick_seconds=self._config.countdown_tick_ms / 1000.0,
            )
            self._countdown.start()
        self._poller.start()
        logger.info("Opened session %s for user %s", self._session_id, self._user_id)
        return session

    async def close(self) -> None:
        """Cancel every timer owned by this coordinator."""
        if self._closed:
            return
        self._closed = True
        if self._countdown is not None:
            self._countdown.cancel()
            await self._countdown.wait()
        await self._poller.stop()
        logger.info("Closed session %s", self._session_id)

    async def __aenter__(self) -> SessionCoordinator:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # --- Presence ---

    async def join(self) -> ParticipantsView:
        machine = self._require_machine()
        if not machine.accepts_participants():
            raise SessionUnavailable("Session is no longer available")
        view = await self._reconciler.join(self._session_id, self._user_id)
        # Joined users poll faster.
        self._poller.wake()
        await self._maybe_auto_start()
        return view

    async def leave(self) -> ParticipantsView:
        self._require_machine()
        view = await self._reconciler.leave(self._session_id, self._user_id)
        self._poller.wake()
        return view

    async def refresh_participants(self) -> ParticipantsView:
        """Fetch participants and re-check the start guard. Used by the poller."""
        view = await self._reconciler.fetch(self._session_id)
        await self._maybe_auto_start()
        return view

    async def refresh(self) -> ParticipantsView:
        """On-demand refresh that bypasses the poll interval."""
        return await self._poller.refresh_now()

    # --- Host actions ---

    async def start(self) -> QuizSession:
        return await self._host_transition(SessionStatus.ACTIVE, "start")

    async def cancel(self) -> QuizSession:
        return await self._host_transition(SessionStatus.CANCELLED, "cancel")

    async def complete(self) -> QuizSession:
        """End the quiz. Completing an already completed session is a no-op."""
        machine = self._require_machine()
        if machine.status is SessionStatus.COMPLETED:
            return machine.session
        return await self._host_transition(SessionStatus.COMPLETED, "complete")

    async def sync_session(self) -> QuizSession:
        """Adopt the store's session status unless it would move backwards."""
        machine = self._require_machine()
        authoritative = await self._api.fetch_session(self._session_id)
        machine.sync(authoritative)
        self._stop_countdown_if_settled()
        return machine.session

    async def check_expired(self) -> bool:
        expired = await self._api.check_expired(self._session_id)
        if expired:
            await self.sync_session()
        return expired

    # --- Results ---

    async def submit_result(
        self,
        score: int,
        correct_answers: int,
        total_questions: int,
        time_taken_seconds: int | None = None,
        answers: list[AnswerRecord] | None = None,
    ) -> QuizResult:
        return await self._api.submit_result(
            self._session_id,
            score=score,
            correct_answers=correct_answers,
            total_questions=total_questions,
            time_taken_seconds=time_taken_seconds,
            answers=answers,
        )

    async def leaderboard(self) -> Leaderboard:
        results = await self._api.fetch_results(self._session_id)
        participant_count = None
        if self._reconciler.has_view(self._session_id):
            participant_count = self.participants.total
        return self._aggregator.aggregate(results, participant_count=participant_count)

    # --- Internals ---

    def _poll_interval(self) -> float | None:
        return self._config.poll_interval_seconds(self.is_joined)

    async def _on_schedule_elapsed(self) -> None:
        machine = self._require_machine()
        machine.mark_schedule_elapsed()
        if not await self._maybe_auto_start():
            logger.info(
                "Schedule for session %s elapsed with nobody online; waiting for a participant",
                self._session_id,
            )

    async def _maybe_auto_start(self) -> bool:
        machine = self._machine
        if machine is None:
            return False
        if not machine.try_auto_start(self.participants.online, now=self._clock()):
            return False
        self._notifier.info(NOTICE_QUIZ_STARTING)
        await self._persist_auto_start()
        return True

    async def _persist_auto_start(self) -> None:
        try:
            authoritative = await self._api.update_status(self._session_id, SessionStatus.ACTIVE)
        except GroupQuizError as exc:
            # Another participant or the host can still record the start.
            logger.warning("Could not record start of session %s: %s", self._session_id, exc)
            return
        self._require_machine().sync(authoritative)

    async def _host_transition(self, target: SessionStatus, action: str) -> QuizSession:
        machine = self._require_machine()
        # Rejected locally before any round-trip.
        machine.ensure_host(self._user_id, action)
        machine.ensure_transition(target)
        authoritative = await self._api.update_status(self._session_id, target)
        machine.sync(authoritative)
        self._stop_countdown_if_settled()
        return machine.session

    def _stop_countdown_if_settled(self) -> None:
        if self._countdown is None or self._machine is None:
            return
        if self._machine.status is not SessionStatus.SCHEDULED:
            self._countdown.cancel()

    def _require_machine(self) -> SessionStateMachine:
        if self._machine is None:
            raise RuntimeError("Session coordinator is not open.")
        return self._machine
