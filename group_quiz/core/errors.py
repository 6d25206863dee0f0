"""Failure kinds surfaced by the session coordination engine.

Every failure is scoped to one session and one operation; none of them is
fatal to the process.
"""

from __future__ import annotations


class GroupQuizError(Exception):
    """Base class for engine failures."""


class AuthenticationRequired(GroupQuizError):
    """The persistence service rejected or did not receive a credential."""


class PermissionDenied(GroupQuizError):
    """The caller is not allowed to perform the action (e.g. non-host start)."""


class TransientNetworkFailure(GroupQuizError):
    """Transport error, timeout or server-side failure; safe to retry."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidTransition(GroupQuizError):
    """A session status change that violates the lifecycle ordering."""


class StaleFetchDiscarded(GroupQuizError):
    """A fetch response older than the locally held state. Never user-visible."""


class SessionNotFound(GroupQuizError):
    """The session does not exist in the persistence service."""


class SessionUnavailable(GroupQuizError):
    """The session no longer accepts participants (completed or cancelled)."""
