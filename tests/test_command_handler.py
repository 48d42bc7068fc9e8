"""Tests for kryten_analytics.command_handler module."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from kryten_analytics.analyzers import ANALYZER_ORDER, register_chat_analyzers
from kryten_analytics.command_handler import COMMAND_SUBJECT, CommandHandler
from kryten_analytics.config import AnalyticsConfig
from kryten_analytics.database import AnalyticsDatabase
from kryten_analytics.scheduler import JobScheduler

from conftest import FakeClock, add_activity


@pytest_asyncio.fixture
async def mock_app(
    sample_config: AnalyticsConfig, database: AnalyticsDatabase, mock_client: MagicMock, clock: FakeClock,
) -> MagicMock:
    """Mock AnalyticsApp with real database, scheduler and jobs."""
    app = MagicMock()
    app.config = sample_config
    app.db = database
    app.client = mock_client
    app.logger = logging.getLogger("test.app")
    app.commands_processed = 0
    app.messages_recorded = 12
    app.uptime_seconds = 42.5
    app.scheduler = JobScheduler(database, clock=clock)
    await app.scheduler.init()
    jobs = register_chat_analyzers(app.scheduler, database, sample_config, clock)
    app.jobs = dict(zip(ANALYZER_ORDER, jobs))
    await database.sync_achievement_definitions(
        [d.model_dump() for d in sample_config.achievements.definitions]
    )
    return app


@pytest.fixture
def handler(mock_app: MagicMock, mock_client: MagicMock) -> CommandHandler:
    """Create CommandHandler."""
    return CommandHandler(mock_app, mock_client, logging.getLogger("test.cmd"))


class TestSystem:

    async def test_connect_subscribes(self, handler: CommandHandler, mock_client: MagicMock):
        await handler.connect()
        mock_client.subscribe_request_reply.assert_awaited_once()
        assert mock_client.subscribe_request_reply.call_args[0][0] == COMMAND_SUBJECT

    async def test_ping(self, handler: CommandHandler):
        result = await handler._handle_command({"command": "system.ping"})
        assert result["success"] is True
        assert result["service"] == "analytics"
        assert result["data"]["pong"] is True

    async def test_health(self, handler: CommandHandler):
        result = await handler._handle_command({"command": "system.health"})
        data = result["data"]
        assert data["status"] == "healthy"
        assert data["jobs_registered"] == 6
        assert data["messages_recorded"] == 12
        assert data["uptime_seconds"] == 42.5

    async def test_unknown_command(self, handler: CommandHandler):
        result = await handler._handle_command({"command": "nope"})
        assert result["success"] is False
        assert "Unknown command" in result["error"]

    async def test_counts_processed(self, handler: CommandHandler, mock_app: MagicMock):
        await handler._handle_command({"command": "system.ping"})
        await handler._handle_command({"command": "system.ping"})
        assert mock_app.commands_processed == 2


class TestJobs:

    async def test_run_and_status(self, handler: CommandHandler, mock_app: MagicMock, database):
        await database.run("INSERT INTO batch_jobs (job_name) VALUES ('DailyActivityTracker')")
        result = await handler._handle_command({"command": "jobs.run", "job": "DailyActivityTracker"})
        assert result["data"] == {"job": "DailyActivityTracker", "started": True}

        for _ in range(200):
            if not mock_app.scheduler.get_job("DailyActivityTracker").is_running:
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)

        status = await handler._handle_command({"command": "jobs.status"})
        jobs = {j["job_name"]: j for j in status["data"]["jobs"]}
        assert jobs["DailyActivityTracker"]["status"] == "idle"

        history = await handler._handle_command(
            {"command": "jobs.history", "job": "DailyActivityTracker", "limit": 5}
        )
        assert history["data"]["history"][0]["status"] == "completed"

    async def test_run_unknown_job(self, handler: CommandHandler):
        result = await handler._handle_command({"command": "jobs.run", "job": "Nope"})
        assert result["success"] is False

    async def test_history_requires_job(self, handler: CommandHandler):
        result = await handler._handle_command({"command": "jobs.history"})
        assert result["success"] is False
        assert result["error"] == "job is required"

    async def test_bad_limit(self, handler: CommandHandler):
        result = await handler._handle_command(
            {"command": "jobs.history", "job": "WordCountAnalyzer", "limit": "lots"}
        )
        assert result["success"] is False

    async def test_cache_status(self, handler: CommandHandler):
        result = await handler._handle_command({"command": "cache.status"})
        assert result["data"]["tables"]["user_chat_streaks"]["record_count"] == 0


class TestStatistics:

    async def test_streak_commands(self, handler: CommandHandler, mock_app: MagicMock, database):
        await add_activity(database, "alice", ["2024-01-08", "2024-01-09"])
        await mock_app.jobs["streak"].execute()

        top = await handler._handle_command({"command": "streaks.top", "limit": 3})
        assert top["data"]["streaks"][0]["username"] == "alice"
        stats = await handler._handle_command({"command": "streaks.stats"})
        assert stats["data"]["summary"]["active_streaks"] == 1
        at_risk = await handler._handle_command({"command": "streaks.at_risk"})
        assert [s["username"] for s in at_risk["data"]["streaks"]] == ["alice"]

    async def test_content_user(self, handler: CommandHandler, database):
        missing = await handler._handle_command({"command": "content.user", "username": "ghost"})
        assert missing["data"] == {"found": False}
        await database.run(
            "INSERT INTO message_analysis_cache (username, total_messages) VALUES ('alice', 3)"
        )
        found = await handler._handle_command({"command": "content.user", "username": "Alice"})
        assert found["data"]["found"] is True
        assert found["data"]["total_messages"] == 3

    async def test_achievements(self, handler: CommandHandler, mock_app: MagicMock, database):
        await database.run(
            "INSERT INTO user_stats (username, message_count) VALUES ('alice', 150)"
        )
        await mock_app.jobs["achievement"].execute()

        user = await handler._handle_command({"command": "achievements.user", "username": "ALICE"})
        assert user["data"]["username"] == "alice"
        assert [a["achievement_type"] for a in user["data"]["achievements"]] == ["message_count"]

        board = await handler._handle_command(
            {"command": "achievements.leaderboard", "type": "message_count"}
        )
        assert board["data"]["leaderboard"][0]["username"] == "alice"

        recent = await handler._handle_command({"command": "achievements.recent"})
        assert len(recent["data"]["achievements"]) == 1

    async def test_leaderboard_requires_type(self, handler: CommandHandler):
        result = await handler._handle_command({"command": "achievements.leaderboard"})
        assert result["success"] is False

    async def test_activity_commands(self, handler: CommandHandler, database):
        await add_activity(database, "alice", ["2024-01-08", "2024-01-09"])
        await add_activity(database, "bob", ["2024-01-09"], messages=20)
        await add_activity(database, "alice", ["2023-06-01"])

        user = await handler._handle_command(
            {"command": "activity.user", "username": "Alice", "days": 7}
        )
        assert user["data"]["days"] == 7
        assert [d["date"] for d in user["data"]["activity"]] == ["2024-01-09", "2024-01-08"]

        weekly = await handler._handle_command({"command": "activity.weekly", "username": "alice"})
        assert [w["day_of_week"] for w in weekly["data"]["weekdays"]] == [1, 2, 4]

        top = await handler._handle_command({"command": "activity.top_days", "limit": 1})
        assert top["data"]["days"] == [
            {"date": "2024-01-09", "unique_users": 2, "total_messages": 25, "total_words": 75}
        ]

    async def test_activity_user_bad_days(self, handler: CommandHandler):
        result = await handler._handle_command(
            {"command": "activity.user", "username": "alice", "days": "forever"}
        )
        assert result["success"] is False
        assert result["error"] == "days must be an integer"

    async def test_hours_commands(self, handler: CommandHandler, database):
        await database.run(
            "INSERT INTO user_active_hours (username, hour, message_count) "
            "VALUES ('alice', 2, 30), ('alice', 9, 5), ('bob', 2, 10)"
        )
        await database.run(
            "INSERT INTO user_activity_summary (username, night_owl_score, night_messages, "
            "early_bird_score, morning_messages) VALUES ('alice', 85.7, 30, 14.3, 5)"
        )

        user = await handler._handle_command({"command": "hours.user", "username": "ALICE"})
        assert [(h["hour"], h["message_count"]) for h in user["data"]["hours"]] == [(2, 30), (9, 5)]

        peak = await handler._handle_command({"command": "hours.peak"})
        assert peak["data"]["hours"][0]["hour"] == 2
        assert peak["data"]["hours"][0]["active_users"] == 2

        patterns = await handler._handle_command({"command": "hours.patterns"})
        assert [u["username"] for u in patterns["data"]["night_owls"]] == ["alice"]
        assert patterns["data"]["early_birds"] == []

    async def test_content_leaders(self, handler: CommandHandler, database):
        await database.run(
            "INSERT INTO message_analysis_cache (username, total_messages, total_words, "
            "emoji_count, emoji_usage_rate, caps_count, caps_usage_rate, question_count, "
            "vocabulary_size) VALUES ('alice', 50, 400, 12, 24.0, 15, 30.0, 8, 120)"
        )

        result = await handler._handle_command({"command": "content.leaders", "limit": 5})

        data = result["data"]
        assert set(data) == {"emoji", "caps", "vocabulary", "questions"}
        assert all([row["username"] for row in rows] == ["alice"] for rows in data.values())
        assert data["vocabulary"][0]["uniqueness_score"] == 30.0
        assert data["questions"][0]["question_rate"] == 16.0

    async def test_user_commands_require_username(self, handler: CommandHandler):
        for command in ("activity.user", "activity.weekly", "hours.user"):
            result = await handler._handle_command({"command": command})
            assert result["success"] is False
            assert result["error"] == "username is required"
