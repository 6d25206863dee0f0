"""FastAPI server exposing the authoritative session and presence endpoints."""

from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, Header, HTTPException

from group_quiz.constants.about import APP_ABOUT_TEXT, APP_LICENSE, APP_NAME, APP_VERSION
from group_quiz.core.errors import (
    AuthenticationRequired,
    GroupQuizError,
    InvalidTransition,
    PermissionDenied,
    SessionNotFound,
    SessionUnavailable,
)
from group_quiz.core.schemas import (
    CreateSessionPayload,
    ExpiryResponse,
    MembershipPayload,
    MessageResponse,
    ParticipantSchema,
    ParticipantsResponse,
    ResultSchema,
    ResultsResponse,
    SessionSchema,
    StatusPayload,
    SubmitResultPayload,
)
from group_quiz.core.services.presence_store import PresenceStore, UserProfile

logger = logging.getLogger(__name__)

_STATUS_CODES: dict[type[GroupQuizError], int] = {
    AuthenticationRequired: 401,
    PermissionDenied: 403,
    SessionNotFound: 404,
    SessionUnavailable: 400,
    InvalidTransition: 409,
}


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ValueError):
        return HTTPException(status_code=422, detail=str(exc))
    for error_type, status_code in _STATUS_CODES.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _get_store_dependency(store: PresenceStore):
    def dependency() -> PresenceStore:
        return store

    return dependency


def _get_identity_dependency(store: PresenceStore):
    def dependency(authorization: str | None = Header(default=None)) -> UserProfile:
        try:
            return store.authenticate(_bearer_token(authorization))
        except AuthenticationRequired as exc:
            raise _http_error(exc) from exc

    return dependency


def create_api_app(store: PresenceStore) -> FastAPI:
    """Create a FastAPI application wired to the provided presence store."""
    app = FastAPI(
        title=f"{APP_NAME} API",
        version=APP_VERSION,
        description=APP_ABOUT_TEXT,
        license_info={"name": APP_LICENSE},
    )
    store_dep = _get_store_dependency(store)
    identity_dep = _get_identity_dependency(store)

    @app.post("/api/sessions", status_code=201)
    def create_session(
        payload: CreateSessionPayload,
        identity: UserProfile = Depends(identity_dep),
        presence: PresenceStore = Depends(store_dep),
    ) -> SessionSchema:
        try:
            session = presence.create_session(
                creator_id=identity.user_id,
                title=payload.title,
                scheduled_at=payload.scheduled_at,
                session_type=payload.session_type,
                video_url=payload.video_url,
            )
        except ValueError as exc:
            raise _http_error(exc) from exc
        logger.info("Session %s created by %s", session.id, identity.user_id)
        return SessionSchema.from_domain(session)

    @app.get("/api/sessions/{session_id}")
    def get_session(
        session_id: str,
        identity: UserProfile = Depends(identity_dep),
        presence: PresenceStore = Depends(store_dep),
    ) -> SessionSchema:
        try:
            return SessionSchema.from_domain(presence.get_session(session_id))
        except GroupQuizError as exc:
            raise _http_error(exc) from exc

    @app.post("/api/sessions/{session_id}/status")
    def update_status(
        session_id: str,
        payload: StatusPayload,
        identity: UserProfile = Depends(identity_dep),
        presence: PresenceStore = Depends(store_dep),
    ) -> SessionSchema:
        try:
            session = presence.set_status(session_id, identity.user_id, payload.status)
        except GroupQuizError as exc:
            raise _http_error(exc) from exc
        return SessionSchema.from_domain(session)

    @app.post("/api/sessions/{session_id}/check-expired")
    def check_expired(
        session_id: str,
        identity: UserProfile = Depends(identity_dep),
        presence: PresenceStore = Depends(store_dep),
    ) -> ExpiryResponse:
        try:
            was_updated = presence.check_expired(session_id)
            session = presence.get_session(session_id)
        except GroupQuizError as exc:
            raise _http_error(exc) from exc
        return ExpiryResponse(
            session_id=session_id,
            was_updated=was_updated,
            status=session.status,
        )

    @app.get("/api/sessions/{session_id}/participants")
    def get_participants(
        session_id: str,
        identity: UserProfile = Depends(identity_dep),
        presence: PresenceStore = Depends(store_dep),
    ) -> ParticipantsResponse:
        try:
            view = presence.participants(session_id)
        except GroupQuizError as exc:
            raise _http_error(exc) from exc
        return ParticipantsResponse.from_view(view)

    @app.post("/api/sessions/{session_id}/join")
    def join_session(
        session_id: str,
        payload: MembershipPayload,
        identity: UserProfile = Depends(identity_dep),
        presence: PresenceStore = Depends(store_dep),
    ) -> ParticipantSchema:
        if payload.user_id != identity.user_id:
            raise HTTPException(status_code=403, detail="Cannot join on behalf of another user")
        try:
            row = presence.join(session_id, identity.user_id)
        except GroupQuizError as exc:
            raise _http_error(exc) from exc
        logger.info("User %s joined session %s", identity.user_id, session_id)
        return ParticipantSchema.from_domain(row)

    @app.post("/api/sessions/{session_id}/leave")
    def leave_session(
        session_id: str,
        payload: MembershipPayload,
        identity: UserProfile = Depends(identity_dep),
        presence: PresenceStore = Depends(store_dep),
    ) -> MessageResponse:
        if payload.user_id != identity.user_id:
            raise HTTPException(status_code=403, detail="Cannot leave on behalf of another user")
        try:
            presence.leave(session_id, identity.user_id)
        except GroupQuizError as exc:
            raise _http_error(exc) from exc
        logger.info("User %s left session %s", identity.user_id, session_id)
        return MessageResponse(message="Left session")

    @app.get("/api/sessions/{session_id}/results")
    def get_results(
        session_id: str,
        identity: UserProfile = Depends(identity_dep),
        presence: PresenceStore = Depends(store_dep),
    ) -> ResultsResponse:
        try:
            presence.require_member(session_id, identity.user_id)
            results = presence.results(session_id)
        except GroupQuizError as exc:
            raise _http_error(exc) from exc
        return ResultsResponse(results=[ResultSchema.from_domain(r) for r in results])

    @app.post("/api/sessions/{session_id}/results", status_code=201)
    def submit_result(
        session_id: str,
        payload: SubmitResultPayload,
        identity: UserProfile = Depends(identity_dep),
        presence: PresenceStore = Depends(store_dep),
    ) -> ResultSchema:
        try:
            presence.require_member(session_id, identity.user_id)
            result = presence.submit_result(
                session_id,
                identity.user_id,
                score=payload.score,
                correct_answers=payload.correct_answers,
                total_questions=payload.total_questions,
                time_taken_seconds=payload.time_taken_seconds,
                answers=[a.to_domain() for a in payload.answers],
            )
        except (GroupQuizError, ValueError) as exc:
            raise _http_error(exc) from exc
        return ResultSchema.from_domain(result)

    return app

