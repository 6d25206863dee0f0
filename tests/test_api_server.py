from __future__ import annotations

from conftest import auth

from group_quiz.core.models import SessionStatus


def _create(client, token, **payload):
    body = {"title": "Friday quiz", "scheduled_at": "2024-05-01T12:05:00+00:00"}
    body.update(payload)
    return client.post("/api/sessions", json=body, headers=auth(token))


def test_requests_without_token_are_unauthorized(client, scheduled_session):
    response = client.get(f"/api/sessions/{scheduled_session.id}/participants")

    assert response.status_code == 401


def test_malformed_authorization_header_is_unauthorized(client, scheduled_session, tokens):
    response = client.get(
        f"/api/sessions/{scheduled_session.id}/participants",
        headers={"Authorization": f"Token {tokens['alice']}"},
    )

    assert response.status_code == 401


def test_create_and_fetch_session(client, tokens):
    created = _create(client, tokens["host"])

    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "scheduled"
    assert body["created_by"] == "host"

    fetched = client.get(f"/api/sessions/{body['id']}", headers=auth(tokens["alice"]))
    assert fetched.status_code == 200
    assert fetched.json()["title"] == "Friday quiz"


def test_create_scheduled_session_without_time_is_rejected(client, tokens):
    response = _create(client, tokens["host"], scheduled_at=None)

    assert response.status_code == 422


def test_unknown_session_is_not_found(client, tokens):
    response = client.get("/api/sessions/missing", headers=auth(tokens["alice"]))

    assert response.status_code == 404


def test_join_and_leave_update_counts(client, tokens, scheduled_session):
    url = f"/api/sessions/{scheduled_session.id}"

    joined = client.post(f"{url}/join", json={"user_id": "alice"}, headers=auth(tokens["alice"]))
    client.post(f"{url}/join", json={"user_id": "bob"}, headers=auth(tokens["bob"]))
    left = client.post(f"{url}/leave", json={"user_id": "alice"}, headers=auth(tokens["alice"]))
    listing = client.get(f"{url}/participants", headers=auth(tokens["host"]))

    assert joined.status_code == 200
    assert joined.json()["is_online"] is True
    assert joined.json()["username"] == "Alice"
    assert left.status_code == 200
    body = listing.json()
    assert (body["total"], body["online"]) == (2, 1)
    assert {p["user_id"] for p in body["participants"]} == {"alice", "bob"}


def test_cannot_join_on_behalf_of_someone_else(client, tokens, scheduled_session):
    response = client.post(
        f"/api/sessions/{scheduled_session.id}/join",
        json={"user_id": "bob"},
        headers=auth(tokens["alice"]),
    )

    assert response.status_code == 403


def test_join_body_requires_user_id(client, tokens, scheduled_session):
    response = client.post(
        f"/api/sessions/{scheduled_session.id}/join", json={}, headers=auth(tokens["alice"])
    )

    assert response.status_code == 422


def test_join_cancelled_session_is_refused(client, tokens, store, scheduled_session):
    store.set_status(scheduled_session.id, "host", SessionStatus.CANCELLED)

    response = client.post(
        f"/api/sessions/{scheduled_session.id}/join",
        json={"user_id": "alice"},
        headers=auth(tokens["alice"]),
    )

    assert response.status_code == 400


def test_status_changes_are_host_only(client, tokens, scheduled_session):
    url = f"/api/sessions/{scheduled_session.id}/status"

    denied = client.post(url, json={"status": "active"}, headers=auth(tokens["alice"]))
    started = client.post(url, json={"status": "active"}, headers=auth(tokens["host"]))
    backwards = client.post(url, json={"status": "scheduled"}, headers=auth(tokens["host"]))

    assert denied.status_code == 403
    assert started.status_code == 200
    assert started.json()["status"] == "active"
    assert started.json()["started_at"] is not None
    assert backwards.status_code == 409


def test_results_flow(client, tokens, store, scheduled_session):
    url = f"/api/sessions/{scheduled_session.id}"
    for user in ("alice", "bob"):
        client.post(f"{url}/join", json={"user_id": user}, headers=auth(tokens[user]))
    store.set_status(scheduled_session.id, "host", SessionStatus.ACTIVE)

    submitted = client.post(
        f"{url}/results",
        json={
            "score": 90,
            "correct_answers": 9,
            "total_questions": 10,
            "time_taken_seconds": 100,
            "answers": [{"question_id": "q1", "answer": "b", "is_correct": True}],
        },
        headers=auth(tokens["alice"]),
    )
    listing = client.get(f"{url}/results", headers=auth(tokens["host"]))

    assert submitted.status_code == 201
    assert submitted.json()["user_id"] == "alice"
    results = listing.json()["results"]
    assert len(results) == 1
    assert results[0]["answers"][0]["question_id"] == "q1"


def test_invalid_result_is_unprocessable(client, tokens, store, scheduled_session):
    url = f"/api/sessions/{scheduled_session.id}"
    client.post(f"{url}/join", json={"user_id": "alice"}, headers=auth(tokens["alice"]))
    store.set_status(scheduled_session.id, "host", SessionStatus.ACTIVE)

    too_many = client.post(
        f"{url}/results",
        json={"score": 50, "correct_answers": 11, "total_questions": 10},
        headers=auth(tokens["alice"]),
    )
    out_of_range = client.post(
        f"{url}/results",
        json={"score": 101, "correct_answers": 1, "total_questions": 10},
        headers=auth(tokens["alice"]),
    )

    assert too_many.status_code == 422
    assert out_of_range.status_code == 422


def test_results_are_members_only(client, tokens, scheduled_session):
    response = client.get(f"/api/sessions/{scheduled_session.id}/results", headers=auth(tokens["bob"]))

    assert response.status_code == 403


def test_check_expired(client, tokens, clock, scheduled_session):
    url = f"/api/sessions/{scheduled_session.id}/check-expired"

    fresh = client.post(url, headers=auth(tokens["alice"]))
    clock.advance(25 * 3600)
    stale = client.post(url, headers=auth(tokens["alice"]))

    assert fresh.json()["was_updated"] is False
    assert stale.json()["was_updated"] is True
    assert stale.json()["status"] == "completed"


def test_participant_can_start_quiz_once_due(client, tokens, clock, scheduled_session):
    url = f"/api/sessions/{scheduled_session.id}"
    client.post(f"{url}/join", json={"user_id": "alice"}, headers=auth(tokens["alice"]))

    early = client.post(f"{url}/status", json={"status": "active"}, headers=auth(tokens["alice"]))
    clock.advance(300)
    started = client.post(f"{url}/status", json={"status": "active"}, headers=auth(tokens["alice"]))
    submitted = client.post(
        f"{url}/results",
        json={"score": 70, "correct_answers": 7, "total_questions": 10},
        headers=auth(tokens["alice"]),
    )

    assert early.status_code == 403
    assert started.status_code == 200
    assert started.json()["status"] == "active"
    assert submitted.status_code == 201
