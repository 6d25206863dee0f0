"""Async HTTP client for the persistence/read API."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
import logging
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from group_quiz.constants.network_constants import (
    DEFAULT_API_BASE_URL,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
)
from group_quiz.core.config import EngineConfig
from group_quiz.core.errors import (
    AuthenticationRequired,
    InvalidTransition,
    PermissionDenied,
    SessionNotFound,
    SessionUnavailable,
    TransientNetworkFailure,
)
from group_quiz.core.models import (
    AnswerRecord,
    ParticipantsView,
    QuizResult,
    QuizSession,
    SessionStatus,
    SessionType,
)
from group_quiz.core.schemas import (
    AnswerSchema,
    CreateSessionPayload,
    ExpiryResponse,
    MembershipPayload,
    ParticipantsResponse,
    ResultSchema,
    ResultsResponse,
    SessionSchema,
    StatusPayload,
    SubmitResultPayload,
)

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], "str | None"]


class PresenceApiClient:
    """Talks to the reference service; satisfies the reconciler's ``PresenceApi``.

    Every request carries the caller's bearer token. HTTP failures are
    translated into the engine's error types so callers never see httpx
    exceptions.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_provider = token_provider
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        token_provider: TokenProvider,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> PresenceApiClient:
        return cls(
            token_provider=token_provider,
            base_url=config.api_base_url,
            timeout=config.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> PresenceApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # --- Presence ---

    async def fetch_participants(self, session_id: str) -> ParticipantsView:
        data = await self._request("GET", f"/api/sessions/{session_id}/participants")
        return _parse(ParticipantsResponse, data).to_view()

    async def join(self, session_id: str, user_id: str) -> None:
        await self._request(
            "POST", f"/api/sessions/{session_id}/join", json=MembershipPayload(user_id=user_id)
        )

    async def leave(self, session_id: str, user_id: str) -> None:
        await self._request(
            "POST", f"/api/sessions/{session_id}/leave", json=MembershipPayload(user_id=user_id)
        )

    # --- Sessions ---

    async def create_session(
        self,
        title: str,
        scheduled_at: datetime | None = None,
        session_type: SessionType = SessionType.SCHEDULED,
        video_url: str | None = None,
    ) -> QuizSession:
        payload = CreateSessionPayload(
            title=title,
            scheduled_at=scheduled_at,
            session_type=session_type,
            video_url=video_url,
        )
        data = await self._request("POST", "/api/sessions", json=payload)
        return _parse(SessionSchema, data).to_domain()

    async def fetch_session(self, session_id: str) -> QuizSession:
        data = await self._request("GET", f"/api/sessions/{session_id}")
        return _parse(SessionSchema, data).to_domain()

    async def update_status(self, session_id: str, status: SessionStatus) -> QuizSession:
        data = await self._request(
            "POST", f"/api/sessions/{session_id}/status", json=StatusPayload(status=status)
        )
        return _parse(SessionSchema, data).to_domain()

    async def check_expired(self, session_id: str) -> bool:
        """Ask the service to expire the session; True when this call expired it."""
        data = await self._request("POST", f"/api/sessions/{session_id}/check-expired")
        return _parse(ExpiryResponse, data).was_updated

    # --- Results ---

    async def fetch_results(self, session_id: str) -> list[QuizResult]:
        data = await self._request("GET", f"/api/sessions/{session_id}/results")
        return [r.to_domain() for r in _parse(ResultsResponse, data).results]

    async def submit_result(
        self,
        session_id: str,
        score: int,
        correct_answers: int,
        total_questions: int,
        time_taken_seconds: int | None = None,
        answers: list[AnswerRecord] | None = None,
    ) -> QuizResult:
        try:
            payload = SubmitResultPayload(
                score=score,
                correct_answers=correct_answers,
                total_questions=total_questions,
                time_taken_seconds=time_taken_seconds,
                answers=[AnswerSchema.from_domain(a) for a in answers or ()],
            )
        except ValidationError as exc:
            raise ValueError(str(exc)) from exc
        data = await self._request("POST", f"/api/sessions/{session_id}/results", json=payload)
        return _parse(ResultSchema, data).to_domain()

    # --- Transport ---

    async def _request(self, method: str, path: str, json: BaseModel | None = None) -> Any:
        token = self._token_provider()
        if not token:
            raise AuthenticationRequired("No access token available")
        body = json.model_dump(mode="json") if json is not None else None
        try:
            response = await self._client.request(
                method,
                path,
                json=body,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise TransientNetworkFailure(f"{method} {path} failed: {exc}") from exc
        if response.is_error:
            raise _error_for(response)
        try:
            return response.json()
        except ValueError as exc:
            raise TransientNetworkFailure(f"{method} {path} returned invalid JSON") from exc


def _detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    detail = data.get("detail") if isinstance(data, dict) else None
    return str(detail) if detail else response.reason_phrase


def _error_for(response: httpx.Response) -> Exception:
    status = response.status_code
    detail = _detail(response)
    logger.debug("%s %s -> %s: %s", response.request.method, response.request.url, status, detail)
    if status == 401:
        return AuthenticationRequired(detail)
    if status == 403:
        return PermissionDenied(detail)
    if status == 404:
        return SessionNotFound(detail)
    if status == 409:
        return InvalidTransition(detail)
    if status == 400:
        return SessionUnavailable(detail)
    if status == 422:
        return ValueError(detail)
    return TransientNetworkFailure(detail, status_code=status)


def _parse(schema: type[BaseModel], data: Any) -> Any:
    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        raise TransientNetworkFailure(f"Malformed {schema.__name__} response: {exc}") from exc

