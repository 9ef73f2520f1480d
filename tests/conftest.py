"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures like a temp DB.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:fake-token-for-tests")
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "openai")
os.environ.setdefault("CRON_SECRET", "fake-cron-secret")
os.environ.setdefault("DATABASE_PATH", ":memory:")

from unittest.mock import AsyncMock

import pytest


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_coach.db")


@pytest.fixture
def stores(tmp_db_path):
    """Return a Stores bundle backed by a temp file."""
    from src.data.db import Stores
    return Stores.open(db_path=tmp_db_path)


@pytest.fixture
def user(stores):
    """A registered user at UTC+00:00."""
    return stores.users.get_or_create("12345", utc_offset_minutes=0)


@pytest.fixture
def notifier():
    """A NotificationPort that records sends."""
    mock = AsyncMock()
    mock.send_message = AsyncMock()
    return mock
