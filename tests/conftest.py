"""Shared test fixtures for kryten-analytics."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
import yaml

from kryten_analytics.config import AnalyticsConfig
from kryten_analytics.database import AnalyticsDatabase
from kryten_analytics.utils import Clock, to_epoch_ms


# ── Minimal config dict matching AnalyticsConfig schema ──────

def make_config_dict(**overrides) -> dict:
    """Build a valid config dict with sensible test defaults."""
    base = {
        "nats": {"servers": ["nats://localhost:4222"]},
        "channels": [{"domain": "cytu.be", "channel": "testchannel"}],
        "service": {"name": "analytics"},
        "database": {"path": ":memory:"},
        "bot": {"username": "TestBot"},
        "ignored_users": ["IgnoredBot"],
        "batch": {"page_delay_seconds": 0},
    }
    base.update(overrides)
    return base


class FakeClock(Clock):
    """Settable clock. ``sleep`` records the request and blocks until cancelled."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        await asyncio.Event().wait()


@pytest.fixture
def sample_config_dict() -> dict:
    return make_config_dict()


@pytest.fixture
def sample_config(sample_config_dict: dict) -> AnalyticsConfig:
    return AnalyticsConfig(**sample_config_dict)


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> str:
    """Return a temporary SQLite database path."""
    return str(tmp_path / "test_analytics.db")


@pytest.fixture
def config_file(tmp_path: Path, tmp_db_path: str) -> Path:
    """A YAML config on disk pointing at the temp database."""
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(make_config_dict(database={"path": tmp_db_path})))
    return path


@pytest_asyncio.fixture
async def database(tmp_db_path: str) -> AsyncGenerator[AnalyticsDatabase, None]:
    """Provide an initialized database with temp file."""
    db = AnalyticsDatabase(tmp_db_path, logging.getLogger("test"))
    await db.initialize()
    yield db


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_client() -> MagicMock:
    """Return a mock KrytenClient with async methods."""
    client = MagicMock()
    client.connect = AsyncMock()
    client.run = AsyncMock()
    client.stop = AsyncMock()
    client.subscribe_request_reply = AsyncMock()
    return client


# ── Data helpers ─────────────────────────────────────────────

def ms(year: int, month: int, day: int, hour: int = 12, minute: int = 0) -> int:
    """Epoch milliseconds for a UTC wall time."""
    return to_epoch_ms(datetime(year, month, day, hour, minute, tzinfo=timezone.utc))


async def add_messages(
    db: AnalyticsDatabase, username: str, texts: list[str], when: int, word_count: int | None = None,
) -> None:
    for i, text in enumerate(texts):
        await db.record_message(username, "testchannel", text, when + i, word_count)


async def add_activity(db: AnalyticsDatabase, username: str, dates: list[str], messages: int = 5) -> None:
    for d in dates:
        await db.run(
            "INSERT INTO user_daily_activity (username, date, message_count, word_count) "
            "VALUES (?, ?, ?, ?)",
            (username, d, messages, messages * 3),
        )
