"""Chat streak calculator: consecutive active days per user."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Sequence

from .batch_job import BatchJob
from .utils import days_between, today_str

# Active today or yesterday still counts toward the current streak
GRACE_DAYS = 1


@dataclass(frozen=True)
class StreakResult:
    current_streak: int
    best_streak: int
    last_active_date: str
    streak_start_date: str | None
    total_active_days: int


def compute_streak(dates: Sequence[str], today: str | date) -> StreakResult | None:
    """Compute streak figures from a user's active dates.

    *dates* are YYYY-MM-DD strings in any order; returns None when empty.
    The best streak is the longest run of consecutive days anywhere in the
    history and is never below the current streak.
    """
    if not dates:
        return None

    ordered = sorted(dates, reverse=True)
    current = 0
    start: str | None = None

    if days_between(today, ordered[0]) <= GRACE_DAYS:
        current = 1
        start = ordered[0]
        for newer, older in zip(ordered, ordered[1:]):
            if days_between(newer, older) != 1:
                break
            current += 1
            start = older

    best = 0
    run = 1
    for newer, older in zip(ordered, ordered[1:]):
        if days_between(newer, older) == 1:
            run += 1
        else:
            best = max(best, run)
            run = 1
    best = max(best, run, current)

    return StreakResult(
        current_streak=current,
        best_streak=best,
        last_active_date=ordered[0],
        streak_start_date=start,
        total_active_days=len(ordered),
    )


class ChatStreakCalculator(BatchJob):
    """Recomputes every user's streak record from daily activity."""

    name = "ChatStreakCalculator"

    def __init__(self, database, logger=None, clock=None, page_delay_seconds=0.1,
                 timezone_offset_hours: float = 0) -> None:
        super().__init__(database, logger, clock, page_delay_seconds)
        self.timezone_offset_hours = timezone_offset_hours

    def current_date(self) -> str:
        return today_str(self.timezone_offset_hours, self._clock.now())

    async def execute(self) -> int:
        users = await self._db.all(
            "SELECT DISTINCT username FROM user_daily_activity ORDER BY username"
        )
        self._logger.info("[%s] Processing streaks for %d users", self.name, len(users))
        today = self.current_date()

        processed = 0
        async with self._db.transaction() as tx:
            for user in users:
                username = user["username"]
                rows = await tx.all(
                    "SELECT date FROM user_daily_activity WHERE username = ? ORDER BY date DESC",
                    (username,),
                )
                result = compute_streak([r["date"] for r in rows], today)
                if result is None:
                    continue
                await self.update_cache(tx, "user_chat_streaks", "username", {
                    "username": username,
                    "current_streak": result.current_streak,
                    "best_streak": result.best_streak,
                    "last_active_date": result.last_active_date,
                    "streak_start_date": result.streak_start_date,
                    "total_active_days": result.total_active_days,
                })
                processed += 1
                if processed % 100 == 0:
                    self._logger.debug(
                        "[%s] Processed %d/%d users", self.name, processed, len(users),
                    )

        return processed

    # ══════════════════════════════════════════════════════════
    #  Queries
    # ══════════════════════════════════════════════════════════

    async def get_streaks_at_risk(self) -> list[dict]:
        """Users on a live streak who have not chatted yet today."""
        today = self.current_date()
        return await self._db.all(
            """
            SELECT username, current_streak, last_active_date, streak_start_date
            FROM user_chat_streaks
            WHERE current_streak > 0
                AND last_active_date < ?
                AND last_active_date >= date(?, '-1 day')
            ORDER BY current_streak DESC
            """,
            (today, today),
        )

    async def get_top_streaks(self, limit: int = 10) -> list[dict]:
        return await self._db.all(
            """
            SELECT username, current_streak, best_streak, last_active_date, total_active_days
            FROM user_chat_streaks
            WHERE current_streak > 0
            ORDER BY current_streak DESC, best_streak DESC
            LIMIT ?
            """,
            (limit,),
        )

    async def get_streak_stats(self) -> dict:
        summary = await self._db.get("""
            SELECT
                COUNT(*) AS total_users,
                COUNT(CASE WHEN current_streak > 0 THEN 1 END) AS active_streaks,
                MAX(current_streak) AS longest_current,
                MAX(best_streak) AS longest_ever,
                AVG(current_streak) AS avg_current_streak,
                AVG(best_streak) AS avg_best_streak,
                COUNT(CASE WHEN current_streak >= 7 THEN 1 END) AS week_streaks,
                COUNT(CASE WHEN current_streak >= 30 THEN 1 END) AS month_streaks,
                COUNT(CASE WHEN current_streak >= 100 THEN 1 END) AS hundred_streaks
            FROM user_chat_streaks
        """)
        distribution = await self._db.all("""
            SELECT
                CASE
                    WHEN current_streak = 0 THEN '0 (Broken)'
                    WHEN current_streak BETWEEN 1 AND 6 THEN '1-6 days'
                    WHEN current_streak BETWEEN 7 AND 29 THEN '7-29 days'
                    WHEN current_streak BETWEEN 30 AND 99 THEN '30-99 days'
                    ELSE '100+ days'
                END AS bucket,
                MIN(current_streak) AS bucket_floor,
                COUNT(*) AS count
            FROM user_chat_streaks
            GROUP BY bucket
            ORDER BY bucket_floor
        """)
        return {
            "summary": summary,
            "distribution": [{"range": d["bucket"], "count": d["count"]} for d in distribution],
        }
