from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient
import pytest

from group_quiz.core.errors import GroupQuizError
from group_quiz.core.models import AnswerRecord, ParticipantsView, QuizResult, QuizSession, SessionStatus
from group_quiz.core.services.presence_store import PresenceStore
from group_quiz.server.api_server import create_api_app

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeSessionApi:
    """In-process stand-in for the HTTP client, backed by a ``PresenceStore``.

    ``failures`` raises once for the named operation. ``gates`` holds an
    operation until the event is set; participant reads are snapshotted
    before waiting so a gated fetch returns data as of its issue time.
    """

    def __init__(self, store: PresenceStore, user_id: str) -> None:
        self.store = store
        self.user_id = user_id
        self.failures: dict[str, GroupQuizError] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []

    async def _enter(self, op: str, key: str | None = None) -> None:
        """Apply gates and failures keyed by ``key`` (e.g. ``join:bob``) or by ``op``."""
        self.calls.append(op)
        names = (key, op) if key else (op,)
        gate = next((self.gates[n] for n in names if n in self.gates), None)
        if gate is not None:
            await gate.wait()
        for name in names:
            failure = self.failures.pop(name, None)
            if failure is not None:
                raise failure

    async def fetch_participants(self, session_id: str) -> ParticipantsView:
        view = self.store.participants(session_id)
        await self._enter("fetch_participants")
        return view

    async def join(self, session_id: str, user_id: str) -> None:
        await self._enter("join", f"join:{user_id}")
        self.store.join(session_id, user_id)

    async def leave(self, session_id: str, user_id: str) -> None:
        await self._enter("leave", f"leave:{user_id}")
        self.store.leave(session_id, user_id)

    async def fetch_session(self, session_id: str) -> QuizSession:
        await self._enter("fetch_session")
        return self.store.get_session(session_id)

    async def update_status(self, session_id: str, status: SessionStatus) -> QuizSession:
        await self._enter("update_status")
        return self.store.set_status(session_id, self.user_id, status)

    async def check_expired(self, session_id: str) -> bool:
        await self._enter("check_expired")
        return self.store.check_expired(session_id)

    async def fetch_results(self, session_id: str) -> list[QuizResult]:
        await self._enter("fetch_results")
        return self.store.results(session_id)

    async def submit_result(
        self,
        session_id: str,
        score: int,
        correct_answers: int,
        total_questions: int,
        time_taken_seconds: int | None = None,
        answers: list[AnswerRecord] | None = None,
    ) -> QuizResult:
        await self._enter("submit_result")
        return self.store.submit_result(
            session_id,
            self.user_id,
            score=score,
            correct_answers=correct_answers,
            total_questions=total_questions,
            time_taken_seconds=time_taken_seconds,
            answers=answers,
        )


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store(clock):
    presence = PresenceStore(clock=clock)
    presence.register_user("host", username="Host", email="host@example.com")
    presence.register_user("alice", username="Alice", email="alice@example.com")
    presence.register_user("bob", email="bob@example.com")
    return presence


@pytest.fixture()
def scheduled_session(store, clock):
    return store.create_session("host", "Friday quiz", scheduled_at=clock() + timedelta(minutes=5))


@pytest.fixture()
def tokens(store):
    return {user_id: store.issue_token(user_id) for user_id in ("host", "alice", "bob")}


@pytest.fixture()
def client(store):
    return TestClient(create_api_app(store))


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
