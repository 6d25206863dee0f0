from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import json

import httpx
import pytest

from group_quiz.client.presence_api import PresenceApiClient
from group_quiz.core.config import EngineConfig
from group_quiz.core.errors import (
    AuthenticationRequired,
    InvalidTransition,
    PermissionDenied,
    SessionNotFound,
    SessionUnavailable,
    TransientNetworkFailure,
)
from group_quiz.core.models import SessionStatus, SessionType
from group_quiz.server.api_server import create_api_app


def _client_for(handler, token="secret"):
    return PresenceApiClient(
        token_provider=lambda: token,
        base_url="http://quiz.test",
        transport=httpx.MockTransport(handler),
    )


def _run(coro):
    return asyncio.run(coro)


def test_attaches_bearer_token_and_parses_participants():
    seen: list[httpx.Request] = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "participants": [
                    {
                        "session_id": "s1",
                        "user_id": "alice",
                        "joined_at": "2024-05-01T12:00:00Z",
                        "is_online": True,
                        "last_seen": "2024-05-01T12:01:00Z",
                        "username": "Alice",
                    }
                ],
                "total": 1,
                "online": 1,
            },
        )

    async def scenario():
        async with _client_for(handler) as client:
            return await client.fetch_participants("s1")

    view = _run(scenario())

    assert seen[0].headers["Authorization"] == "Bearer secret"
    assert seen[0].url.path == "/api/sessions/s1/participants"
    assert (view.total, view.online) == (1, 1)
    assert view.participants[0].last_seen == datetime(2024, 5, 1, 12, 1, tzinfo=timezone.utc)


def test_join_posts_user_id_body():
    bodies: list[bytes] = []

    def handler(request):
        bodies.append(request.content)
        return httpx.Response(200, json={})

    async def scenario():
        async with _client_for(handler) as client:
            await client.join("s1", "alice")

    _run(scenario())

    assert [json.loads(body) for body in bodies] == [{"user_id": "alice"}]


def test_missing_token_fails_before_any_request():
    def handler(request):
        raise AssertionError("no request expected")

    async def scenario():
        async with _client_for(handler, token=None) as client:
            await client.fetch_participants("s1")

    with pytest.raises(AuthenticationRequired):
        _run(scenario())


@pytest.mark.parametrize(
    "status, error",
    [
        (401, AuthenticationRequired),
        (403, PermissionDenied),
        (404, SessionNotFound),
        (400, SessionUnavailable),
        (409, InvalidTransition),
        (422, ValueError),
        (500, TransientNetworkFailure),
        (503, TransientNetworkFailure),
        (429, TransientNetworkFailure),
    ],
)
def test_http_errors_are_classified(status, error):
    def handler(request):
        return httpx.Response(status, json={"detail": "nope"})

    async def scenario():
        async with _client_for(handler) as client:
            await client.leave("s1", "alice")

    with pytest.raises(error, match="nope"):
        _run(scenario())


def test_transport_errors_are_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario():
        async with _client_for(handler) as client:
            await client.fetch_participants("s1")

    with pytest.raises(TransientNetworkFailure):
        _run(scenario())


def test_malformed_payload_is_transient():
    def handler(request):
        return httpx.Response(200, json={"participants": "oops"})

    async def scenario():
        async with _client_for(handler) as client:
            await client.fetch_participants("s1")

    with pytest.raises(TransientNetworkFailure):
        _run(scenario())


def test_invalid_result_is_rejected_locally():
    def handler(request):
        raise AssertionError("no request expected")

    async def scenario():
        async with _client_for(handler) as client:
            await client.submit_result("s1", score=101, correct_answers=1, total_questions=10)

    with pytest.raises(ValueError):
        _run(scenario())


def test_round_trip_against_reference_service(store, tokens):
    app = create_api_app(store)

    def client_for(user_id):
        return PresenceApiClient(
            token_provider=lambda: tokens[user_id],
            base_url="http://quiz.test",
            transport=httpx.ASGITransport(app=app),
        )

    async def scenario():
        async with client_for("host") as host, client_for("alice") as alice:
            session = await host.create_session(
                "Live quiz", session_type=SessionType.INSTANT, scheduled_at=None
            )
            await alice.join(session.id, "alice")
            view = await alice.fetch_participants(session.id)
            result = await alice.submit_result(
                session.id, score=80, correct_answers=8, total_questions=10, time_taken_seconds=42
            )
            results = await host.fetch_results(session.id)
            completed = await host.fetch_session(session.id)
            with pytest.raises(InvalidTransition):
                await host.update_status(session.id, SessionStatus.SCHEDULED)
            expired = await alice.check_expired(session.id)
            return session, view, result, results, completed, expired

    session, view, result, results, completed, expired = _run(scenario())

    assert session.status is SessionStatus.ACTIVE
    assert view.is_joined("alice")
    assert result.username == "Alice"
    assert [r.id for r in results] == [result.id]
    # Alice was the only participant, so her submission completed the session.
    assert completed.status is SessionStatus.COMPLETED
    assert expired is False


def test_client_built_from_config_uses_base_url():
    seen: list[httpx.Request] = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"results": []})

    config = EngineConfig(api_base_url="http://config.test")

    async def scenario():
        client = PresenceApiClient.from_config(config, lambda: "t", transport=httpx.MockTransport(handler))
        async with client:
            return await client.fetch_results("s9")

    assert _run(scenario()) == []
    assert str(seen[0].url) == "http://config.test/api/sessions/s9/results"
