"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures like a temp-file Store.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "anthropic")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("GOOGLE_MAPS_API_KEY", "")

from datetime import datetime

import pytest

from src.core.timeutils import BRT

OWNER = "12345"
HANDLE = "12345"


def brt(year, month, day, hour=0, minute=0):
    """Aware Brasília datetime shorthand."""
    return datetime(year, month, day, hour, minute, tzinfo=BRT)


# Monday, 3 Feb 2025, 10:00 BRT
NOW = brt(2025, 2, 3, 10, 0)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_lembra.db")


@pytest.fixture
def store(tmp_db_path):
    """Return a Store backed by a temp file, with one registered user."""
    from src.data.db import Store
    s = Store(db_path=tmp_db_path)
    s.users.add_user(OWNER, HANDLE, "Ana")
    return s


@pytest.fixture
def event_db(tmp_db_path):
    from src.data.db import EventDB
    return EventDB(db_path=tmp_db_path)


@pytest.fixture
def notifier():
    """NotificationPort double whose sends succeed with increasing ids."""
    from unittest.mock import AsyncMock

    from src.ports.notification_port import DeliveryResult

    counter = {"n": 0}

    async def _send(handle, text):
        counter["n"] += 1
        return DeliveryResult(ok=True, delivery_id=f"msg-{counter['n']}")

    mock = AsyncMock()
    mock.send_message = AsyncMock(side_effect=_send)
    return mock
