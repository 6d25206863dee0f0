"""Notification sinks for user-facing notices (joined, left, failures)."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def success(self, message: str) -> None: ...

    def info(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class LoggingNotifier:
    """Default sink: routes notices to the application log."""

    def __init__(self, name: str = "group_quiz.notices") -> None:
        self._logger = logging.getLogger(name)

    def success(self, message: str) -> None:
        self._logger.info("[success] %s", message)

    def info(self, message: str) -> None:
        self._logger.info("[info] %s", message)

    def error(self, message: str) -> None:
        self._logger.warning("[error] %s", message)


@dataclass(slots=True)
class Notice:
    level: str
    message: str


@dataclass(slots=True)
class RecordingNotifier:
    """Keeps notices in memory, for embedding UIs that render them later."""

    notices: list[Notice] = field(default_factory=list)

    def success(self, message: str) -> None:
        self.notices.append(Notice("success", message))

    def info(self, message: str) -> None:
        self.notices.append(Notice("info", message))

    def error(self, message: str) -> None:
        self.notices.append(Notice("error", message))

    def messages(self, level: str | None = None) -> list[str]:
        return [n.message for n in self.notices if level is None or n.level == level]

    def clear(self) -> None:
        self.notices.clear()
