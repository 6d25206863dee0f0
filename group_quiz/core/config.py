"""Explicit engine configuration."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import os

from group_quiz.constants.network_constants import (
    DEFAULT_API_BASE_URL,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
)
from group_quiz.constants.session_constants import (
    COUNTDOWN_TICK_MS,
    JOINED_POLL_INTERVAL_MS,
    UNJOINED_POLL_INTERVAL_MS,
)
from group_quiz.core.services.leaderboard import ResultPolicy

_ENV_PREFIX = "GROUP_QUIZ_"


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Polling, countdown and transport settings for one client.

    ``unjoined_poll_interval_ms=None`` disables background polling while the
    local user is not joined; manual refresh still works when enabled.
    """

    joined_poll_interval_ms: int = JOINED_POLL_INTERVAL_MS
    unjoined_poll_interval_ms: int | None = UNJOINED_POLL_INTERVAL_MS
    manual_refresh_enabled: bool = True
    countdown_tick_ms: int = COUNTDOWN_TICK_MS
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    result_policy: ResultPolicy = ResultPolicy.LATEST
    api_base_url: str = DEFAULT_API_BASE_URL

    def __post_init__(self) -> None:
        if self.joined_poll_interval_ms <= 0:
            raise ValueError("Joined poll interval must be a positive number of milliseconds.")
        if self.unjoined_poll_interval_ms is not None and self.unjoined_poll_interval_ms <= 0:
            raise ValueError("Unjoined poll interval must be positive or None to disable it.")
        if self.countdown_tick_ms <= 0:
            raise ValueError("Countdown tick must be a positive number of milliseconds.")
        if self.request_timeout_seconds <= 0:
            raise ValueError("Request timeout must be positive.")

    def poll_interval_seconds(self, joined: bool) -> float | None:
        interval_ms = self.joined_poll_interval_ms if joined else self.unjoined_poll_interval_ms
        if interval_ms is None:
            return None
        return interval_ms / 1000.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineConfig:
        env = os.environ if environ is None else environ

        def _get(name: str, default: str) -> str:
            return env.get(_ENV_PREFIX + name, default)

        unjoined_raw = _get("UNJOINED_POLL_INTERVAL_MS", str(UNJOINED_POLL_INTERVAL_MS or 0))
        unjoined = int(unjoined_raw)
        return cls(
            joined_poll_interval_ms=int(_get("JOINED_POLL_INTERVAL_MS", str(JOINED_POLL_INTERVAL_MS))),
            # 0 disables polling while not joined
            unjoined_poll_interval_ms=unjoined or None,
            manual_refresh_enabled=_get("MANUAL_REFRESH_ENABLED", "1").lower() not in ("0", "false", "no"),
            countdown_tick_ms=int(_get("COUNTDOWN_TICK_MS", str(COUNTDOWN_TICK_MS))),
            request_timeout_seconds=float(
                _get("REQUEST_TIMEOUT_SECONDS", str(DEFAULT_REQUEST_TIMEOUT_SECONDS))
            ),
            result_policy=ResultPolicy(_get("RESULT_POLICY", ResultPolicy.LATEST.value)),
            api_base_url=_get("API_BASE_URL", DEFAULT_API_BASE_URL),
        )
