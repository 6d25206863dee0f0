"""Wire schemas for the persistence/read API, shared by server and client."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from group_quiz.constants.session_constants import MAX_SCORE, MIN_SCORE
from group_quiz.core.models import (
    AnswerRecord,
    ParticipantsView,
    QuizResult,
    QuizSession,
    SessionParticipant,
    SessionStatus,
    SessionType,
)
from group_quiz.utils.dates import ensure_utc


class ParticipantSchema(BaseModel):
    session_id: str
    user_id: str
    joined_at: datetime
    is_online: bool
    last_seen: datetime
    user_email: str | None = None
    username: str | None = None
    avatar: str | None = None

    @classmethod
    def from_domain(cls, participant: SessionParticipant) -> ParticipantSchema:
        return cls(
            session_id=participant.session_id,
            user_id=participant.user_id,
            joined_at=participant.joined_at,
            is_online=participant.is_online,
            last_seen=participant.last_seen,
            user_email=participant.email,
            username=participant.username,
            avatar=participant.avatar,
        )

    def to_domain(self) -> SessionParticipant:
        return SessionParticipant(
            session_id=self.session_id,
            user_id=self.user_id,
            joined_at=ensure_utc(self.joined_at),
            is_online=self.is_online,
            last_seen=ensure_utc(self.last_seen),
            email=self.user_email,
            username=self.username,
            avatar=self.avatar,
        )


class ParticipantsResponse(BaseModel):
    """Payload schema for ``GET /participants``."""

    participants: list[ParticipantSchema]
    total: int = Field(ge=0)
    online: int = Field(ge=0)

    @classmethod
    def from_view(cls, view: ParticipantsView) -> ParticipantsResponse:
        return cls(
            participants=[ParticipantSchema.from_domain(p) for p in view.participants],
            total=view.total,
            online=view.online,
        )

    def to_view(self) -> ParticipantsView:
        total = max(self.total, len(self.participants))
        return ParticipantsView(
            participants=tuple(p.to_domain() for p in self.participants),
            total=total,
            online=min(self.online, total),
        )


class MembershipPayload(BaseModel):
    """Payload schema for join and leave requests."""

    user_id: str = Field(min_length=1)


class SessionSchema(BaseModel):
    id: str
    title: str
    created_by: str
    join_token: str
    status: SessionStatus
    session_type: SessionType = SessionType.SCHEDULED
    video_url: str | None = None
    scheduled_at: datetime | None = None
    created_at: datetime
    started_at: datetime | None = None
    ended_at: datetime | None = None

    @classmethod
    def from_domain(cls, session: QuizSession) -> SessionSchema:
        return cls(
            id=session.id,
            title=session.title,
            created_by=session.created_by,
            join_token=session.join_token,
            status=session.status,
            session_type=session.session_type,
            video_url=session.video_url,
            scheduled_at=session.scheduled_at,
            created_at=session.created_at,
            started_at=session.started_at,
            ended_at=session.ended_at,
        )

    def to_domain(self) -> QuizSession:
        return QuizSession(
            id=self.id,
            title=self.title,
            created_by=self.created_by,
            join_token=self.join_token,
            status=self.status,
            session_type=self.session_type,
            video_url=self.video_url,
            scheduled_at=ensure_utc(self.scheduled_at) if self.scheduled_at else None,
            created_at=ensure_utc(self.created_at),
            started_at=ensure_utc(self.started_at) if self.started_at else None,
            ended_at=ensure_utc(self.ended_at) if self.ended_at else None,
        )


class CreateSessionPayload(BaseModel):
    title: str = Field(min_length=1)
    video_url: str | None = None
    scheduled_at: datetime | None = None
    session_type: SessionType = SessionType.SCHEDULED


class StatusPayload(BaseModel):
    status: SessionStatus


class AnswerSchema(BaseModel):
    question_id: str
    answer: str | None = None
    is_correct: bool
    time_taken_seconds: float | None = None

    @classmethod
    def from_domain(cls, record: AnswerRecord) -> AnswerSchema:
        return cls(
            question_id=record.question_id,
            answer=record.answer,
            is_correct=record.is_correct,
            time_taken_seconds=record.time_taken_seconds,
        )

    def to_domain(self) -> AnswerRecord:
        return AnswerRecord(
            question_id=self.question_id,
            answer=self.answer,
            is_correct=self.is_correct,
            time_taken_seconds=self.time_taken_seconds,
        )


class ResultSchema(BaseModel):
    id: str
    session_id: str
    user_id: str
    score: int
    correct_answers: int
    total_questions: int
    time_taken_seconds: int | None = None
    completed_at: datetime | None = None
    answers: list[AnswerSchema] = Field(default_factory=list)
    username: str | None = None
    user_email: str | None = None

    @classmethod
    def from_domain(cls, result: QuizResult) -> ResultSchema:
        return cls(
            id=result.id,
            session_id=result.session_id,
            user_id=result.user_id,
            score=result.score,
            correct_answers=result.correct_answers,
            total_questions=result.total_questions,
            time_taken_seconds=result.time_taken_seconds,
            completed_at=result.completed_at,
            answers=[AnswerSchema.from_domain(a) for a in result.answers],
            username=result.username,
            user_email=result.email,
        )

    def to_domain(self) -> QuizResult:
        return QuizResult(
            id=self.id,
            session_id=self.session_id,
            user_id=self.user_id,
            score=self.score,
            correct_answers=self.correct_answers,
            total_questions=self.total_questions,
            time_taken_seconds=self.time_taken_seconds,
            completed_at=ensure_utc(self.completed_at) if self.completed_at else None,
            answers=tuple(a.to_domain() for a in self.answers),
            username=self.username,
            email=self.user_email,
        )


class ResultsResponse(BaseModel):
    results: list[ResultSchema]


class SubmitResultPayload(BaseModel):
    """Payload schema for a completed quiz attempt."""

    score: int = Field(ge=MIN_SCORE, le=MAX_SCORE)
    correct_answers: int = Field(ge=0)
    total_questions: int = Field(gt=0)
    time_taken_seconds: int | None = Field(default=None, ge=0)
    answers: list[AnswerSchema] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_counts(self) -> SubmitResultPayload:
        if self.correct_answers > self.total_questions:
            raise ValueError("correct_answers cannot exceed total_questions")
        return self


class ExpiryResponse(BaseModel):
    session_id: str
    was_updated: bool
    status: SessionStatus


class MessageResponse(BaseModel):
    message: str
