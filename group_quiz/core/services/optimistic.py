"""Snapshot / apply / commit-or-rollback primitive for optimistic local state."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Generic, TypeVar

T = TypeVar("T")

Undo = Callable[[T, T], T]


class OptimisticUpdate(Generic[T]):
    """One optimistic mutation of a value owned elsewhere.

    ``read`` returns the current value and ``write`` replaces it. The update
    remembers the value seen at :meth:`apply` time so :meth:`rollback` can
    restore exactly that snapshot.

    When other writers may touch the value while this update is pending,
    pass ``undo(current, snapshot)``. If the value changed since
    :meth:`apply`, rollback writes ``undo``'s result instead of the snapshot
    so only this update's change is reverted.
    """

    def __init__(
        self,
        read: Callable[[], T],
        write: Callable[[T], None],
        undo: Undo[T] | None = None,
    ) -> None:
        self._read = read
        self._write = write
        self._undo = undo
        self._snapshot: T | None = None
        self._applied: T | None = None
        self._state: str = "idle"

    @property
    def state(self) -> str:
        return self._state

    @property
    def snapshot(self) -> T | None:
        return self._snapshot

    def apply(self, change: Callable[[T], T]) -> T:
        if self._state != "idle":
            raise RuntimeError("Optimistic update was already applied.")
        self._snapshot = self._read()
        value = change(self._snapshot)
        self._write(value)
        self._applied = value
        self._state = "applied"
        return value

    def commit(self) -> None:
        self._require_applied()
        self._state = "committed"

    def rollback(self) -> None:
        self._require_applied()
        current = self._read()
        if self._undo is None or current is self._applied:
            self._write(self._snapshot)
        else:
            self._write(self._undo(current, self._snapshot))
        self._state = "rolled_back"

    def _require_applied(self) -> None:
        if self._state != "applied":
            raise RuntimeError(f"Optimistic update is {self._state}, not applied.")


@asynccontextmanager
async def optimistic(
    read: Callable[[], T],
    write: Callable[[T], None],
    change: Callable[[T], T],
    undo: Undo[T] | None = None,
) -> AsyncIterator[T]:
    """Apply ``change`` now; commit if the block succeeds, roll back if it raises.

    Cancellation of the enclosing task also rolls back.
    """
    update: OptimisticUpdate[T] = OptimisticUpdate(read, write, undo)
    value = update.apply(change)
    try:
        yield value
    except BaseException:
        update.rollback()
        raise
    update.commit()
