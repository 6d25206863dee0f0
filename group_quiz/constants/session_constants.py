"""Session, polling and countdown constants shared across core and server layers."""

JOINED_POLL_INTERVAL_MS: int = 5_000
UNJOINED_POLL_INTERVAL_MS: int | None = 30_000
COUNTDOWN_TICK_MS: int = 1_000

# Scheduled/active sessions older than this are treated as expired.
SESSION_EXPIRY_HOURS: int = 24

MIN_SCORE: int = 0
MAX_SCORE: int = 100

NOTICE_JOINED: str = "Successfully joined the quiz room!"
NOTICE_LEFT: str = "Left the quiz room"
NOTICE_AUTH_REQUIRED: str = "Authentication required. Please refresh the page."
NOTICE_JOIN_FAILED: str = "Failed to join quiz room"
NOTICE_LEAVE_FAILED: str = "Failed to leave quiz room"
NOTICE_QUIZ_STARTING: str = "Quiz starting now!"
