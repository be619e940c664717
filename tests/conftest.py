"""Shared test fixtures and configuration.

Sets up fake environment variables before any src imports, and provides
common fixtures like a temp DB, a fake household and recording channels.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("OPERATOR_CHAT_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("DEFAULT_TIMEZONE", "Europe/Paris")

import pytest


class RecordingChat:
    """NotificationPort double that records sends and can fail per chat id."""

    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail_for = fail_for or set()

    async def send_message(self, chat_id: str, text: str) -> None:
        if chat_id in self.fail_for:
            raise ConnectionError(f"network down for {chat_id}")
        self.sent.append((chat_id, text))


class RecordingDesktop:
    """DesktopPort double."""

    def __init__(self, fail: bool = False) -> None:
        self.shown: list[tuple[str, str, str]] = []
        self.fail = fail

    async def show(self, title: str, body: str, tag: str) -> None:
        if self.fail:
            raise RuntimeError("notification daemon unavailable")
        self.shown.append((title, body, tag))


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_lifesync.db")


@pytest.fixture
def household_db(tmp_db_path):
    """Return a HouseholdDB instance backed by a temp file."""
    from src.data.db import HouseholdDB
    return HouseholdDB(db_path=tmp_db_path)


@pytest.fixture
def household_record():
    """A two-member Paris household, both reachable on the chat bot."""
    return {
        "id": "h1",
        "timezone": "Europe/Paris",
        "members": ["alice", "bob"],
        "memberPreferences": {
            "alice": {"telegramChatId": "111", "displayName": "Alice"},
            "bob": {"telegramChatId": "222", "displayName": "Bob"},
        },
    }


@pytest.fixture
def household(household_record):
    from src.core.obligations import household_from_record
    return household_from_record(household_record, "Europe/Paris")


@pytest.fixture
def chat():
    return RecordingChat()


@pytest.fixture
def desktop():
    return RecordingDesktop()
