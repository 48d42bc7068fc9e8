"""Chat achievement calculator: tiered, once-only achievement awards.

Each definition carries four ascending thresholds. For every (type, tier)
the calculator selects users at or above the threshold who do not already
hold that exact award, and inserts one row per user. The unique index on
``chat_achievements`` backs the exclusion, so re-runs never duplicate a
grant and awards are never revoked.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple

from .batch_job import BatchJob


class Tier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    DIAMOND = "diamond"


# Evaluation order, highest first
TIER_ORDER = (Tier.DIAMOND, Tier.GOLD, Tier.SILVER, Tier.BRONZE)
TIER_RANK = {Tier.BRONZE: 1, Tier.SILVER: 2, Tier.GOLD: 3, Tier.DIAMOND: 4}


@dataclass(frozen=True)
class AchievementDefinition:
    type: str
    name: str
    description: str = ""
    bronze_threshold: int | None = None
    silver_threshold: int | None = None
    gold_threshold: int | None = None
    diamond_threshold: int | None = None
    icon: str = ""

    @classmethod
    def from_row(cls, row: dict) -> AchievementDefinition:
        return cls(
            type=row["type"],
            name=row["name"],
            description=row.get("description") or "",
            bronze_threshold=row.get("bronze_threshold"),
            silver_threshold=row.get("silver_threshold"),
            gold_threshold=row.get("gold_threshold"),
            diamond_threshold=row.get("diamond_threshold"),
            icon=row.get("icon") or "",
        )

    def threshold(self, tier: Tier) -> int | None:
        if tier is Tier.BRONZE:
            return self.bronze_threshold
        if tier is Tier.SILVER:
            return self.silver_threshold
        if tier is Tier.GOLD:
            return self.gold_threshold
        return self.diamond_threshold

    def tiers(self) -> list[tuple[Tier, int]]:
        """(tier, threshold) pairs with a threshold set, highest tier first."""
        return [(t, self.threshold(t)) for t in TIER_ORDER if self.threshold(t) is not None]


class AchievementMetric(NamedTuple):
    table: str
    value: str
    detail: str
    condition: str = ""


# ── Achievement type → metric source ────────────────────────

_METRIC_MAP: dict[str, AchievementMetric] = {
    "message_count": AchievementMetric("user_stats", "message_count", "Reached {value} messages"),
    "word_count": AchievementMetric("user_stats", "total_words", "Typed {value} words"),
    "streak_days": AchievementMetric(
        "user_chat_streaks", "MAX(current_streak, best_streak)", "{value} day chat streak",
    ),
    "active_days": AchievementMetric(
        "user_chat_streaks", "total_active_days", "Active for {value} days",
    ),
    "night_owl": AchievementMetric(
        "user_activity_summary", "night_messages", "{value} late night messages",
        "AND night_owl_score > 30",
    ),
    "early_bird": AchievementMetric(
        "user_activity_summary", "morning_messages", "{value} early morning messages",
        "AND early_bird_score > 30",
    ),
    "emoji_user": AchievementMetric("message_analysis_cache", "emoji_count", "Used {value} emojis"),
    "caps_lock": AchievementMetric(
        "message_analysis_cache", "caps_count", "SENT {value} CAPS MESSAGES",
    ),
    "question_asker": AchievementMetric(
        "message_analysis_cache", "question_count", "Asked {value} questions",
    ),
    "link_sharer": AchievementMetric("message_analysis_cache", "url_count", "Shared {value} links"),
    "vocabulary": AchievementMetric(
        "message_analysis_cache", "vocabulary_size", "Vocabulary of {value} unique words",
    ),
    "longest_msg": AchievementMetric(
        "message_analysis_cache", "longest_message", "Wrote a {value} character message",
    ),
}


class ChatAchievementCalculator(BatchJob):
    """Awards chat achievements from the derived statistics tables."""

    name = "ChatAchievementCalculator"

    def __init__(self, database, logger=None, clock=None, page_delay_seconds=0.1,
                 excluded_users: set[str] | None = None) -> None:
        super().__init__(database, logger, clock, page_delay_seconds)
        self.excluded_users = sorted(u.lower() for u in (excluded_users or ()))

    async def execute(self) -> int:
        rows = await self._db.all(
            "SELECT * FROM achievement_definitions WHERE category = ? ORDER BY type", ("chat",),
        )
        definitions = [AchievementDefinition.from_row(r) for r in rows]
        self._logger.info("[%s] Processing %d achievement types", self.name, len(definitions))

        total = 0
        for definition in definitions:
            total += await self.process_achievement(definition)

        self._logger.info("[%s] Awarded %d achievements", self.name, total)
        return total

    async def process_achievement(self, definition: AchievementDefinition) -> int:
        """Award every eligible (user, tier) for one definition. Returns new awards."""
        metric = _METRIC_MAP.get(definition.type)
        if metric is None:
            self._logger.warning(
                "[%s] Unknown achievement type %r, skipping", self.name, definition.type,
            )
            return 0

        # System names and excluded accounts never earn awards, even when a
        # stats row exists for them
        excluded_sql = "AND username NOT LIKE '[%]'"
        if self.excluded_users:
            excluded_sql += " AND LOWER(username) NOT IN ({})".format(
                ", ".join("?" for _ in self.excluded_users)
            )

        awarded = 0
        now = self._clock.now_ms()
        async with self._db.transaction() as tx:
            for tier, threshold in definition.tiers():
                users = await tx.all(
                    f"""
                    SELECT username, {metric.value} AS value
                    FROM {metric.table}
                    WHERE {metric.value} >= ?
                        {metric.condition}
                        {excluded_sql}
                        AND username NOT IN (
                            SELECT username FROM chat_achievements
                            WHERE achievement_type = ? AND achievement_level = ?
                        )
                    ORDER BY username
                    """,
                    (threshold, *self.excluded_users, definition.type, tier.value),
                )
                for user in users:
                    result = await tx.run(
                        "INSERT OR IGNORE INTO chat_achievements "
                        "(username, achievement_type, achievement_level, achieved_at, details) "
                        "VALUES (?, ?, ?, ?, ?)",
                        (user["username"], definition.type, tier.value, now,
                         metric.detail.format(value=user["value"])),
                    )
                    if result.rowcount == 1:
                        awarded += 1
                        self._logger.debug(
                            "[%s] %s earned %s %s", self.name,
                            user["username"], tier.value, definition.type,
                        )
        return awarded

    # ══════════════════════════════════════════════════════════
    #  Queries
    # ══════════════════════════════════════════════════════════

    async def get_user_achievements(self, username: str) -> list[dict]:
        return await self._db.all(
            """
            SELECT a.*, d.name, d.description, d.icon
            FROM chat_achievements a
            JOIN achievement_definitions d ON a.achievement_type = d.type
            WHERE a.username = ?
            ORDER BY a.achieved_at DESC, a.id DESC
            """,
            (username.lower(),),
        )

    async def get_achievement_leaderboard(self, achievement_type: str, limit: int = 10) -> list[dict]:
        rank_sql = " ".join(
            f"WHEN achievement_level = '{tier.value}' THEN {rank}" for tier, rank in TIER_RANK.items()
        )
        return await self._db.all(
            f"""
            SELECT
                username,
                COUNT(*) AS achievement_count,
                MAX(CASE {rank_sql} ELSE 0 END) AS highest_tier
            FROM chat_achievements
            WHERE achievement_type = ?
            GROUP BY username
            ORDER BY highest_tier DESC, achievement_count DESC, username
            LIMIT ?
            """,
            (achievement_type, limit),
        )

    async def get_recent_achievements(self, limit: int = 20) -> list[dict]:
        return await self._db.all(
            """
            SELECT a.*, d.name, d.description, d.icon
            FROM chat_achievements a
            JOIN achievement_definitions d ON a.achievement_type = d.type
            ORDER BY a.achieved_at DESC, a.id DESC
            LIMIT ?
            """,
            (limit,),
        )
