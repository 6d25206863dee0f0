"""Static metadata describing the group quiz engine."""

APP_NAME = "GroupQuizSync"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "GroupQuizSync coordinates scheduled group quiz sessions: lobby presence, "
    "countdowns to the scheduled start, and ranked leaderboards once everyone is done."
)
