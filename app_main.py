"""Application entry point for the GroupQuizSync reference service."""

from __future__ import annotations

import os

import uvicorn

from group_quiz.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from group_quiz.core.services.presence_store import PresenceStore
from group_quiz.server.api_server import create_api_app
from group_quiz.utils.logging_config import configure_logging

_DEMO_USERS: tuple[tuple[str, str, str], ...] = (
    ("host", "Quiz Host", "host@example.com"),
    ("alice", "Alice", "alice@example.com"),
    ("bob", "Bob", "bob@example.com"),
)


def _seed_demo_users(store: PresenceStore) -> dict[str, str]:
    """Register demo identities and return a token per user."""
    tokens: dict[str, str] = {}
    for user_id, username, email in _DEMO_USERS:
        store.register_user(user_id, username=username, email=email)
        tokens[user_id] = store.issue_token(user_id)
    return tokens


def main() -> None:
    """Initialize logging, seed the in-memory store, and serve the API."""
    logger = configure_logging()
    logger.info("Starting GroupQuizSync reference service…")

    store = PresenceStore()
    for user_id, token in _seed_demo_users(store).items():
        logger.info("Demo bearer token for %s: %s", user_id, token)

    host = os.environ.get("GROUP_QUIZ_HOST", DEFAULT_HOST)
    port = int(os.environ.get("GROUP_QUIZ_PORT", str(DEFAULT_PORT)))
    uvicorn.run(create_api_app(store), host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
