"""Active hours analyzer: hour-of-day activity and time-of-day profiles."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Mapping

from .batch_job import BatchJob
from .utils import sqlite_hours_modifier

MORNING = range(6, 12)
AFTERNOON = range(12, 18)
EVENING = range(18, 24)
NIGHT = range(0, 6)


@dataclass(frozen=True)
class ActivitySummary:
    most_active_hour: int
    least_active_hour: int
    morning_messages: int
    afternoon_messages: int
    evening_messages: int
    night_messages: int
    night_owl_score: float
    early_bird_score: float
    consistency_score: float


def summarize_hours(counts: Mapping[int, int]) -> ActivitySummary:
    """Build a time-of-day profile from per-hour message counts.

    Scores are percentages rounded to one decimal. Consistency is
    ``100 - stddev/mean*100`` over all 24 hours, floored at zero.
    """
    hours = [counts.get(h, 0) for h in range(24)]
    total = sum(hours)

    most_hour, most = 0, 0
    least_hour, least = 0, total
    for hour, count in enumerate(hours):
        if count > most:
            most_hour, most = hour, count
        if 0 < count < least:
            least_hour, least = hour, count

    morning = sum(hours[h] for h in MORNING)
    night = sum(hours[h] for h in NIGHT)

    mean = total / 24
    stddev = math.sqrt(sum((c - mean) ** 2 for c in hours) / 24)
    consistency = max(0.0, 100 - stddev / mean * 100) if mean > 0 else 0.0

    return ActivitySummary(
        most_active_hour=most_hour,
        least_active_hour=least_hour,
        morning_messages=morning,
        afternoon_messages=sum(hours[h] for h in AFTERNOON),
        evening_messages=sum(hours[h] for h in EVENING),
        night_messages=night,
        night_owl_score=round(night / total * 100, 1) if total else 0.0,
        early_bird_score=round(morning / total * 100, 1) if total else 0.0,
        consistency_score=round(consistency, 1),
    )


class ActiveHoursAnalyzer(BatchJob):
    """Rebuilds ``user_active_hours`` and ``user_activity_summary``."""

    name = "ActiveHoursAnalyzer"

    def __init__(self, database, logger=None, clock=None, page_delay_seconds=0.1,
                 excluded_users: set[str] | None = None,
                 timezone_offset_hours: float = 0) -> None:
        super().__init__(database, logger, clock, page_delay_seconds)
        self.excluded_users = sorted(u.lower() for u in (excluded_users or ()))
        self.timezone_offset_hours = timezone_offset_hours

    async def execute(self) -> int:
        params: list = [sqlite_hours_modifier(self.timezone_offset_hours)]
        excluded_sql = ""
        if self.excluded_users:
            excluded_sql = "AND LOWER(username) NOT IN ({})".format(
                ", ".join("?" for _ in self.excluded_users)
            )
            params.extend(self.excluded_users)

        hourly = await self._db.all(
            f"""
            SELECT
                LOWER(username) AS username,
                CAST(strftime('%H', datetime(timestamp / 1000, 'unixepoch', ?)) AS INTEGER) AS hour,
                COUNT(*) AS message_count,
                SUM(COALESCE(word_count, 0)) AS word_count,
                AVG(LENGTH(message)) AS avg_message_length
            FROM messages
            WHERE username NOT LIKE '[%]'
                {excluded_sql}
            GROUP BY LOWER(username), hour
            ORDER BY username, hour
            """,
            params,
        )
        self._logger.info("[%s] Processing %d user-hour combinations", self.name, len(hourly))

        by_user: dict[str, dict[int, int]] = {}
        for row in hourly:
            by_user.setdefault(row["username"], {})[row["hour"]] = row["message_count"]

        # Full rebuild in one transaction so readers never see a half-empty table
        async with self._db.transaction() as tx:
            await tx.run("DELETE FROM user_active_hours")
            await tx.run("DELETE FROM user_activity_summary")
            await tx.run_many(
                "INSERT INTO user_active_hours "
                "(username, hour, message_count, word_count, avg_message_length) "
                "VALUES (?, ?, ?, ?, ?)",
                [
                    (r["username"], r["hour"], r["message_count"], r["word_count"] or 0,
                     round(r["avg_message_length"] or 0))
                    for r in hourly
                ],
            )
            for username, counts in by_user.items():
                summary = summarize_hours(counts)
                await self.update_cache(
                    tx, "user_activity_summary", "username",
                    {"username": username, **asdict(summary)},
                )

        return len(hourly)

    # ══════════════════════════════════════════════════════════
    #  Queries
    # ══════════════════════════════════════════════════════════

    async def get_user_activity_heatmap(self, username: str) -> list[dict]:
        return await self._db.all(
            "SELECT hour, message_count, word_count, avg_message_length "
            "FROM user_active_hours WHERE username = ? ORDER BY hour",
            (username.lower(),),
        )

    async def get_global_peak_hours(self) -> list[dict]:
        return await self._db.all("""
            SELECT
                hour,
                SUM(message_count) AS total_messages,
                COUNT(DISTINCT username) AS active_users,
                AVG(message_count) AS avg_messages_per_user
            FROM user_active_hours
            GROUP BY hour
            ORDER BY total_messages DESC
        """)

    async def get_time_pattern_users(self, limit: int = 10) -> dict:
        night_owls = await self._db.all(
            "SELECT username, night_owl_score, night_messages FROM user_activity_summary "
            "WHERE night_owl_score > 30 ORDER BY night_owl_score DESC LIMIT ?",
            (limit,),
        )
        early_birds = await self._db.all(
            "SELECT username, early_bird_score, morning_messages FROM user_activity_summary "
            "WHERE early_bird_score > 30 ORDER BY early_bird_score DESC LIMIT ?",
            (limit,),
        )
        return {"night_owls": night_owls, "early_birds": early_birds}
