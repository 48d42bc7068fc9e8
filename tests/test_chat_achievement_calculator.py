"""Tests for kryten_analytics.chat_achievement_calculator module."""

from __future__ import annotations

import logging

import pytest

from kryten_analytics.chat_achievement_calculator import (
    AchievementDefinition,
    ChatAchievementCalculator,
    Tier,
)
from kryten_analytics.database import AnalyticsDatabase

from conftest import FakeClock


def _definition(type_: str, bronze=None, silver=None, gold=None, diamond=None, category="chat") -> dict:
    return {
        "type": type_, "name": type_.title(), "description": "", "icon": "",
        "bronze_threshold": bronze, "silver_threshold": silver,
        "gold_threshold": gold, "diamond_threshold": diamond, "category": category,
    }


async def _user_stats(db: AnalyticsDatabase, username: str, messages: int, words: int = 0) -> None:
    await db.run(
        "INSERT INTO user_stats (username, message_count, total_words) VALUES (?, ?, ?)",
        (username, messages, words),
    )


@pytest.fixture
def calculator(database: AnalyticsDatabase, clock: FakeClock) -> ChatAchievementCalculator:
    return ChatAchievementCalculator(database, clock=clock, page_delay_seconds=0)


class TestAchievementDefinition:

    def test_tiers_highest_first(self):
        d = AchievementDefinition(type="x", name="X", bronze_threshold=1, silver_threshold=5,
                                  diamond_threshold=50)
        assert d.tiers() == [(Tier.DIAMOND, 50), (Tier.SILVER, 5), (Tier.BRONZE, 1)]

    def test_zero_threshold_is_a_tier(self):
        d = AchievementDefinition(type="x", name="X", bronze_threshold=0, silver_threshold=10)
        assert d.tiers() == [(Tier.SILVER, 10), (Tier.BRONZE, 0)]

    def test_from_row(self):
        d = AchievementDefinition.from_row(_definition("message_count", bronze=100))
        assert d.threshold(Tier.BRONZE) == 100
        assert d.threshold(Tier.GOLD) is None


class TestAwards:

    async def test_single_bronze_award_is_never_repeated(self, database, calculator, clock):
        await database.sync_achievement_definitions([_definition("message_count", bronze=100, silver=1000)])
        await _user_stats(database, "alice", 150)

        assert await calculator.execute() == 1
        rows = await database.all("SELECT * FROM chat_achievements")
        assert len(rows) == 1
        assert rows[0]["username"] == "alice"
        assert rows[0]["achievement_level"] == "bronze"
        assert rows[0]["achieved_at"] == clock.now_ms()
        assert rows[0]["details"] == "Reached 150 messages"

        assert await calculator.execute() == 0
        assert len(await database.all("SELECT * FROM chat_achievements")) == 1

    async def test_all_reached_tiers_awarded(self, database, calculator):
        await database.sync_achievement_definitions(
            [_definition("word_count", bronze=10, silver=100, gold=1000, diamond=10000)]
        )
        await _user_stats(database, "alice", 5, words=1500)

        assert await calculator.execute() == 3
        rows = await database.all(
            "SELECT achievement_level, details FROM chat_achievements ORDER BY achievement_level"
        )
        assert [r["achievement_level"] for r in rows] == ["bronze", "gold", "silver"]
        assert rows[0]["details"] == "Typed 1500 words"

    async def test_higher_tier_later(self, database, calculator):
        await database.sync_achievement_definitions([_definition("message_count", bronze=100, silver=200)])
        await _user_stats(database, "alice", 150)
        await calculator.execute()
        await database.run("UPDATE user_stats SET message_count = 250 WHERE username = 'alice'")

        assert await calculator.execute() == 1
        levels = await database.all(
            "SELECT achievement_level FROM chat_achievements ORDER BY achievement_level"
        )
        assert [r["achievement_level"] for r in levels] == ["bronze", "silver"]

    async def test_streak_uses_best_streak(self, database, calculator):
        await database.sync_achievement_definitions([_definition("streak_days", bronze=7)])
        await database.run(
            "INSERT INTO user_chat_streaks (username, current_streak, best_streak, total_active_days) "
            "VALUES ('bob', 2, 8, 20)"
        )
        assert await calculator.execute() == 1
        row = await database.get("SELECT details FROM chat_achievements")
        assert row["details"] == "8 day chat streak"

    async def test_night_owl_requires_score(self, database, calculator):
        await database.sync_achievement_definitions([_definition("night_owl", bronze=50)])
        await database.run(
            "INSERT INTO user_activity_summary (username, night_messages, night_owl_score) "
            "VALUES ('owl', 60, 40.0), ('casual', 60, 20.0)"
        )
        assert await calculator.execute() == 1
        row = await database.get("SELECT username FROM chat_achievements")
        assert row["username"] == "owl"

    async def test_unknown_type_skipped(self, database, calculator, caplog):
        await database.sync_achievement_definitions([
            _definition("mystery", bronze=1),
            _definition("message_count", bronze=1),
        ])
        await _user_stats(database, "alice", 5)
        with caplog.at_level(logging.WARNING):
            assert await calculator.execute() == 1
        assert "mystery" in caplog.text

    async def test_other_categories_ignored(self, database, calculator):
        await database.sync_achievement_definitions(
            [_definition("message_count", bronze=1, category="gambling")]
        )
        await _user_stats(database, "alice", 5)
        assert await calculator.execute() == 0

    async def test_awards_never_revoked(self, database, calculator):
        await database.sync_achievement_definitions([_definition("message_count", bronze=100)])
        await _user_stats(database, "alice", 150)
        await calculator.execute()
        await database.run("DELETE FROM user_stats")
        await calculator.execute()
        assert len(await database.all("SELECT * FROM chat_achievements")) == 1

    async def test_excluded_and_system_users_never_awarded(self, database, clock):
        calculator = ChatAchievementCalculator(
            database, clock=clock, page_delay_seconds=0, excluded_users={"TestBot", "IgnoredBot"},
        )
        await database.sync_achievement_definitions([_definition("message_count", bronze=100)])
        for name in ("alice", "testbot", "ignoredbot", "[server]"):
            await _user_stats(database, name, 150)

        assert await calculator.execute() == 1
        rows = await database.all("SELECT username FROM chat_achievements")
        assert [r["username"] for r in rows] == ["alice"]


class TestQueries:

    async def _seed(self, database, calculator):
        await database.sync_achievement_definitions([_definition("message_count", bronze=10, silver=100)])
        await _user_stats(database, "alice", 500)
        await _user_stats(database, "bob", 50)
        await _user_stats(database, "carol", 20)
        await calculator.execute()

    async def test_user_achievements(self, database, calculator):
        await self._seed(database, calculator)
        rows = await calculator.get_user_achievements("Alice")
        assert {r["achievement_level"] for r in rows} == {"bronze", "silver"}
        assert rows[0]["name"] == "Message_Count"

    async def test_leaderboard(self, database, calculator):
        await self._seed(database, calculator)
        board = await calculator.get_achievement_leaderboard("message_count")
        assert [(b["username"], b["highest_tier"]) for b in board] == [
            ("alice", 2), ("bob", 1), ("carol", 1),
        ]
        assert board[0]["achievement_count"] == 2

    async def test_recent(self, database, calculator):
        await self._seed(database, calculator)
        assert len(await calculator.get_recent_achievements(limit=2)) == 2
