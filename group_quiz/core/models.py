"""Domain models for group quiz sessions, presence and results."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

from group_quiz.constants.session_constants import MAX_SCORE, MIN_SCORE
from group_quiz.utils.dates import utc_now


class SessionStatus(str, Enum):
    """Lifecycle status of a quiz session."""

    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.CANCELLED)


class SessionType(str, Enum):
    INSTANT = "instant"
    SCHEDULED = "scheduled"


@dataclass(slots=True)
class QuizSession:
    """A scheduled group quiz instance hosted by its creator."""

    id: str
    title: str
    created_by: str
    join_token: str
    status: SessionStatus = SessionStatus.SCHEDULED
    session_type: SessionType = SessionType.SCHEDULED
    video_url: str | None = None
    scheduled_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    ended_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class SessionParticipant:
    """Presence row for one user in one session, keyed by (session_id, user_id)."""

    session_id: str
    user_id: str
    joined_at: datetime
    is_online: bool
    last_seen: datetime
    email: str | None = None
    username: str | None = None
    avatar: str | None = None

    @property
    def display_name(self) -> str:
        return display_name_for(self.username, self.email)


@dataclass(frozen=True, slots=True)
class ParticipantsView:
    """Snapshot of a session's participant set with derived counts.

    Views are immutable: optimistic changes produce a new view via
    :meth:`with_online` / :meth:`with_offline`, which keeps snapshots usable
    for rollback.
    """

    participants: tuple[SessionParticipant, ...] = ()
    total: int = 0
    online: int = 0

    def __post_init__(self) -> None:
        if self.total < 0 or self.online < 0:
            raise ValueError("Participant counts must not be negative.")
        if self.online > self.total:
            raise ValueError(
                f"Online count {self.online} exceeds total participant count {self.total}."
            )

    @classmethod
    def from_participants(cls, participants: list[SessionParticipant]) -> ParticipantsView:
        rows = tuple(participants)
        return cls(
            participants=rows,
            total=len(rows),
            online=sum(1 for p in rows if p.is_online),
        )

    @property
    def online_participants(self) -> list[SessionParticipant]:
        return [p for p in self.participants if p.is_online]

    def find(self, user_id: str) -> SessionParticipant | None:
        return next((p for p in self.participants if p.user_id == user_id), None)

    def is_joined(self, user_id: str | None) -> bool:
        if not user_id:
            return False
        participant = self.find(user_id)
        return participant is not None and participant.is_online

    def with_online(self, session_id: str, user_id: str, now: datetime) -> ParticipantsView:
        """Return a view where ``user_id`` is online, inserting a row if needed."""
        existing = self.find(user_id)
        if existing is not None and existing.is_online:
            return self
        if existing is None:
            row = SessionParticipant(
                session_id=session_id,
                user_id=user_id,
                joined_at=now,
                is_online=True,
                last_seen=now,
            )
            total = self.total + 1
            return ParticipantsView(
                participants=self.participants + (row,),
                total=total,
                online=min(total, self.online + 1),
            )
        rows = tuple(
            replace(p, is_online=True, last_seen=now) if p.user_id == user_id else p
            for p in self.participants
        )
        return ParticipantsView(
            participants=rows,
            total=self.total,
            online=min(self.total, self.online + 1),
        )

    def with_offline(self, user_id: str, now: datetime) -> ParticipantsView:
        """Return a view where ``user_id`` is offline; unknown or offline users are a no-op."""
        existing = self.find(user_id)
        if existing is None or not existing.is_online:
            return self
        rows = tuple(
            replace(p, is_online=False, last_seen=now) if p.user_id == user_id else p
            for p in self.participants
        )
        return ParticipantsView(
            participants=rows,
            total=self.total,
            online=max(0, self.online - 1),
        )

    def with_row(self, user_id: str, row: SessionParticipant | None) -> ParticipantsView:
        """Return a view where ``user_id``'s row is ``row``, or absent when ``row`` is None."""
        existing = self.find(user_id)
        if existing is None:
            rows = self.participants + ((row,) if row is not None else ())
        elif row is None:
            rows = tuple(p for p in self.participants if p.user_id != user_id)
        else:
            rows = tuple(row if p.user_id == user_id else p for p in self.participants)
        total = max(0, self.total - (existing is not None) + (row is not None))
        online = self.online - bool(existing and existing.is_online) + bool(row and row.is_online)
        return ParticipantsView(participants=rows, total=total, online=max(0, min(online, total)))


@dataclass(frozen=True, slots=True)
class AnswerRecord:
    """One answered question inside a quiz attempt."""

    question_id: str
    answer: str | None
    is_correct: bool
    time_taken_seconds: float | None = None


@dataclass(frozen=True, slots=True)
class QuizResult:
    """Completed attempt of one participant. Results are append-only."""

    id: str
    session_id: str
    user_id: str
    score: int
    correct_answers: int
    total_questions: int
    time_taken_seconds: int | None = None
    completed_at: datetime | None = None
    answers: tuple[AnswerRecord, ...] = ()
    username: str | None = None
    email: str | None = None

    def __post_init__(self) -> None:
        if not MIN_SCORE <= self.score <= MAX_SCORE:
            raise ValueError(f"Score must be between {MIN_SCORE} and {MAX_SCORE}.")
        if self.total_questions <= 0:
            raise ValueError("Total questions must be a positive integer.")
        if not 0 <= self.correct_answers <= self.total_questions:
            raise ValueError("Correct answers must be between 0 and the total question count.")
        if self.time_taken_seconds is not None and self.time_taken_seconds < 0:
            raise ValueError("Time taken must not be negative.")

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    """Ranked row produced by the leaderboard aggregator."""

    rank: int
    user_id: str
    display_name: str
    score: int
    time_taken_seconds: int | None
    correct_answers: int
    total_questions: int
    completed_at: datetime | None


@dataclass(frozen=True, slots=True)
class LeaderboardStats:
    participant_count: int
    completed_count: int
    average_score: int
    highest_score: int
    completion_rate: int


@dataclass(frozen=True, slots=True)
class Leaderboard:
    entries: tuple[LeaderboardEntry, ...]
    stats: LeaderboardStats

    def top(self, limit: int = 3) -> list[LeaderboardEntry]:
        return list(self.entries[:limit])


def display_name_for(username: str | None, email: str | None) -> str:
    """Prefer the username, then the local part of the email."""
    if username and username.strip():
        return username.strip()
    if email and "@" in email:
        return email.split("@", 1)[0]
    return "Unknown User"
