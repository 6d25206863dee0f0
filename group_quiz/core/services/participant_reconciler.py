"""Service owning the client-side view of session participants.

The reconciler is the only writer of the participant cache. ``join`` and
``leave`` apply an optimistic change immediately and either keep it (then
re-fetch) or roll it back to the pre-mutation snapshot. When another join or
leave wrote the cache in the meantime, rollback only restores the failed
user's row so the other pending change survives. ``fetch`` overwrites
the cache with the authoritative view unless the response is stale.

Staleness is decided with one monotonic sequence: every fetch is tagged
when issued, every cache write (optimistic apply, rollback, accepted fetch)
advances the session's cache version. A fetch issued before the latest
write, or resolving while a mutation is still in flight, is discarded.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from functools import partial
import itertools
import logging
from typing import Protocol

from group_quiz.constants.session_constants import (
    NOTICE_AUTH_REQUIRED,
    NOTICE_JOIN_FAILED,
    NOTICE_JOINED,
    NOTICE_LEAVE_FAILED,
    NOTICE_LEFT,
)
from group_quiz.core.errors import (
    AuthenticationRequired,
    GroupQuizError,
    StaleFetchDiscarded,
)
from group_quiz.core.models import ParticipantsView
from group_quiz.core.notifications import LoggingNotifier, Notifier
from group_quiz.core.services.optimistic import optimistic
from group_quiz.utils.dates import utc_now

logger = logging.getLogger(__name__)


class PresenceApi(Protocol):
    """Authoritative presence operations the reconciler depends on."""

    async def fetch_participants(self, session_id: str) -> ParticipantsView: ...

    async def join(self, session_id: str, user_id: str) -> None: ...

    async def leave(self, session_id: str, user_id: str) -> None: ...


@dataclass(slots=True)
class _SessionCache:
    view: ParticipantsView | None = None
    version: int = 0
    pending_mutations: int = 0
    stale: bool = True


class ParticipantReconciler:
    """Owns the mapping from session id to its participant view."""

    def __init__(
        self,
        api: PresenceApi,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._api = api
        self._notifier = notifier or LoggingNotifier()
        self._clock = clock
        self._sequence = itertools.count(1)
        self._caches: dict[str, _SessionCache] = {}

    # --- Read side ---

    def view(self, session_id: str) -> ParticipantsView:
        """Return the cached view, or an empty one if nothing was fetched yet."""
        cache = self._caches.get(session_id)
        if cache is None or cache.view is None:
            return ParticipantsView()
        return cache.view

    def has_view(self, session_id: str) -> bool:
        cache = self._caches.get(session_id)
        return cache is not None and cache.view is not None

    def is_joined(self, session_id: str, user_id: str | None) -> bool:
        return self.view(session_id).is_joined(user_id)

    def is_stale(self, session_id: str) -> bool:
        cache = self._caches.get(session_id)
        return cache is None or cache.stale

    def is_mutating(self, session_id: str) -> bool:
        cache = self._caches.get(session_id)
        return cache is not None and cache.pending_mutations > 0

    def invalidate(self, session_id: str) -> None:
        self._cache(session_id).stale = True

    async def fetch(self, session_id: str) -> ParticipantsView:
        """Fetch the authoritative view and reconcile the cache with it.

        Never waits for in-flight mutations. Read failures leave the last
        known view in place and propagate to the caller.
        """
        issued = next(self._sequence)
        try:
            fetched = await self._api.fetch_participants(session_id)
        except GroupQuizError as exc:
            logger.warning("Fetching participants for session %s failed: %s", session_id, exc)
            raise
        try:
            self._accept(session_id, issued, fetched)
        except StaleFetchDiscarded as exc:
            logger.debug("%s", exc)
        return self.view(session_id)

    # --- Mutations ---

    async def join(self, session_id: str, user_id: str) -> ParticipantsView:
        """Mark ``user_id`` online, optimistically first, then authoritatively.

        Joining while already online in the cached view is a no-op.
        """
        user_id = _require_user(user_id)
        if self.is_joined(session_id, user_id):
            logger.debug("User %s already online in session %s", user_id, session_id)
            return self.view(session_id)

        now = self._clock()
        change = partial(_mark_online, session_id=session_id, user_id=user_id, now=now)
        undo = partial(_restore_row, user_id=user_id)
        try:
            await self._mutate(session_id, change, undo, partial(self._api.join, session_id, user_id))
        except AuthenticationRequired:
            self._notifier.error(NOTICE_AUTH_REQUIRED)
            raise
        except GroupQuizError:
            self._notifier.error(NOTICE_JOIN_FAILED)
            raise
        self._notifier.success(NOTICE_JOINED)
        return await self._reconcile_after_mutation(session_id)

    async def leave(self, session_id: str, user_id: str) -> ParticipantsView:
        """Mark ``user_id`` offline. Leaving while already offline is a no-op."""
        user_id = _require_user(user_id)
        if not self.is_joined(session_id, user_id):
            logger.debug("User %s already offline in session %s", user_id, session_id)
            return self.view(session_id)

        now = self._clock()
        change = partial(_mark_offline, user_id=user_id, now=now)
        undo = partial(_restore_row, user_id=user_id)
        try:
            await self._mutate(session_id, change, undo, partial(self._api.leave, session_id, user_id))
        except AuthenticationRequired:
            self._notifier.error(NOTICE_AUTH_REQUIRED)
            raise
        except GroupQuizError:
            self._notifier.error(NOTICE_LEAVE_FAILED)
            raise
        self._notifier.success(NOTICE_LEFT)
        return await self._reconcile_after_mutation(session_id)

    async def _mutate(
        self,
        session_id: str,
        change: Callable[[ParticipantsView | None], ParticipantsView],
        undo: Callable[[ParticipantsView | None, ParticipantsView | None], ParticipantsView],
        send: Callable[[], Awaitable[None]],
    ) -> None:
        cache = self._cache(session_id)
        cache.pending_mutations += 1
        try:
            async with optimistic(
                read=lambda: cache.view,
                write=partial(self._store, session_id),
                change=change,
                undo=undo,
            ):
                await send()
        except BaseException as exc:
            logger.warning(
                "Rolled back optimistic change for session %s (%s)", session_id, type(exc).__name__
            )
            raise
        finally:
            cache.pending_mutations -= 1
            # Fetches issued while the write was in flight may predate it.
            cache.version = next(self._sequence)

    async def _reconcile_after_mutation(self, session_id: str) -> ParticipantsView:
        self.invalidate(session_id)
        try:
            return await self.fetch(session_id)
        except GroupQuizError:
            # The write succeeded; the next poll or manual refresh reconciles.
            return self.view(session_id)

    # --- Cache plumbing ---

    def _cache(self, session_id: str) -> _SessionCache:
        cache = self._caches.get(session_id)
        if cache is None:
            cache = _SessionCache()
            self._caches[session_id] = cache
        return cache

    def _store(self, session_id: str, view: ParticipantsView | None) -> None:
        cache = self._cache(session_id)
        cache.view = view
        cache.version = next(self._sequence)

    def _accept(self, session_id: str, issued: int, fetched: ParticipantsView) -> None:
        cache = self._cache(session_id)
        if cache.pending_mutations:
            raise StaleFetchDiscarded(
                f"Discarded fetch #{issued} for session {session_id}: mutation in flight"
            )
        if issued < cache.version:
            raise StaleFetchDiscarded(
                f"Discarded fetch #{issued} for session {session_id}: cache is at #{cache.version}"
            )
        cache.view = fetched
        cache.version = issued
        cache.stale = False


def _require_user(user_id: str | None) -> str:
    if user_id is None or not str(user_id).strip():
        raise ValueError("User ID is required.")
    return str(user_id).strip()


def _mark_online(
    view: ParticipantsView | None, *, session_id: str, user_id: str, now: datetime
) -> ParticipantsView:
    return (view or ParticipantsView()).with_online(session_id, user_id, now)


def _mark_offline(view: ParticipantsView | None, *, user_id: str, now: datetime) -> ParticipantsView:
    return (view or ParticipantsView()).with_offline(user_id, now)


def _restore_row(
    current: ParticipantsView | None, snapshot: ParticipantsView | None, *, user_id: str
) -> ParticipantsView:
    previous = snapshot.find(user_id) if snapshot is not None else None
    return (current or ParticipantsView()).with_row(user_id, previous)
