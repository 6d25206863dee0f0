from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from group_quiz.core.errors import InvalidTransition, PermissionDenied
from group_quiz.core.models import QuizSession, SessionStatus, SessionType
from group_quiz.core.services.session_state import SessionStateMachine

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _session(**overrides):
    values = dict(
        id="s1",
        title="Quiz",
        created_by="host",
        join_token="tok",
        scheduled_at=NOW + timedelta(minutes=1),
        created_at=NOW - timedelta(hours=1),
    )
    values.update(overrides)
    return QuizSession(**values)


def test_host_can_start_scheduled_session():
    machine = SessionStateMachine(_session())

    machine.start("host", NOW)

    assert machine.status is SessionStatus.ACTIVE
    assert machine.session.started_at == NOW


def test_non_host_start_is_denied_without_changes():
    machine = SessionStateMachine(_session())

    with pytest.raises(PermissionDenied):
        machine.start("alice", NOW)

    assert machine.status is SessionStatus.SCHEDULED
    assert machine.session.started_at is None


def test_auto_start_needs_elapsed_schedule_and_someone_online():
    machine = SessionStateMachine(_session())

    assert machine.try_auto_start(online_count=3, now=NOW) is False
    machine.mark_schedule_elapsed()
    assert machine.try_auto_start(online_count=0, now=NOW) is False
    assert machine.status is SessionStatus.SCHEDULED
    assert machine.try_auto_start(online_count=1, now=NOW) is True
    assert machine.status is SessionStatus.ACTIVE


def test_complete_is_idempotent():
    machine = SessionStateMachine(_session(status=SessionStatus.ACTIVE))

    assert machine.complete(NOW) is True
    assert machine.complete(NOW + timedelta(seconds=5)) is False
    assert machine.status is SessionStatus.COMPLETED
    assert machine.session.ended_at == NOW


def test_complete_from_scheduled_is_rejected():
    machine = SessionStateMachine(_session())

    with pytest.raises(InvalidTransition):
        machine.complete(NOW)


def test_cancelled_is_absorbing(caplog):
    machine = SessionStateMachine(_session())
    machine.cancel("host", NOW)

    with caplog.at_level("WARNING"):
        with pytest.raises(InvalidTransition):
            machine.start("host", NOW)

    assert machine.status is SessionStatus.CANCELLED
    assert "Rejected transition" in caplog.text
    assert not machine.accepts_participants()


def test_sync_adopts_progress_and_rejects_regression():
    machine = SessionStateMachine(_session())
    machine.start("host", NOW)

    assert machine.sync(_session()) is False
    assert machine.status is SessionStatus.ACTIVE

    completed = _session(status=SessionStatus.COMPLETED, ended_at=NOW)
    assert machine.sync(completed) is True
    assert machine.status is SessionStatus.COMPLETED


def test_sync_same_status_keeps_local_timestamps():
    machine = SessionStateMachine(_session())
    machine.start("host", NOW)

    assert machine.sync(_session(status=SessionStatus.ACTIVE)) is True
    assert machine.session.started_at == NOW


def test_sync_leaves_callers_session_untouched():
    machine = SessionStateMachine(_session())
    machine.start("host", NOW)
    incoming = _session(status=SessionStatus.ACTIVE)

    machine.sync(incoming)

    assert incoming.started_at is None
    assert machine.session is not incoming
    assert machine.session.started_at == NOW


def test_scheduled_session_expires_a_day_after_its_start_time():
    machine = SessionStateMachine(_session(scheduled_at=NOW - timedelta(hours=25)))

    assert machine.is_expired(NOW) is True
    assert machine.expire(NOW) is True
    assert machine.status is SessionStatus.COMPLETED
    assert machine.session.ended_at == NOW
    assert machine.expire(NOW) is False


def test_instant_session_expiry_uses_creation_time():
    session = _session(
        session_type=SessionType.INSTANT,
        scheduled_at=None,
        status=SessionStatus.ACTIVE,
        created_at=NOW - timedelta(hours=23),
    )
    machine = SessionStateMachine(session)

    assert machine.is_expired(NOW) is False
    assert machine.is_expired(NOW + timedelta(hours=2)) is True


def test_terminal_sessions_never_expire():
    session = _session(status=SessionStatus.CANCELLED, scheduled_at=NOW - timedelta(days=3))

    assert SessionStateMachine(session).is_expired(NOW) is False


def test_host_check():
    machine = SessionStateMachine(replace(_session(), created_by="owner"))

    assert machine.is_host("owner")
    assert not machine.is_host(None)
    assert not machine.is_host("host")
