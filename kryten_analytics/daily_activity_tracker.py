"""Daily activity tracker: per-user, per-day message rollups."""

from __future__ import annotations

from datetime import timedelta

from .batch_job import BatchJob


class DailyActivityTracker(BatchJob):
    """Aggregates new messages into ``user_daily_activity``.

    Incremental from the latest stored date. That date is re-aggregated as
    well, since the previous run may have seen only part of it; the upsert
    overwrites the row with the full day's totals.
    """

    name = "DailyActivityTracker"

    def __init__(self, database, logger=None, clock=None, page_delay_seconds=0.1,
                 excluded_users: set[str] | None = None,
                 retention_days: int = 90, batch_size: int = 5000) -> None:
        super().__init__(database, logger, clock, page_delay_seconds)
        self.excluded_users = sorted(u.lower() for u in (excluded_users or ()))
        self.retention_days = retention_days
        self.batch_size = batch_size

    def _cutoff(self, days: int) -> str:
        return (self._clock.now() - timedelta(days=days)).date().isoformat()

    async def execute(self) -> int:
        last = await self._db.get("SELECT MAX(date) AS last_date FROM user_daily_activity")
        start_date = (last or {}).get("last_date") or self._cutoff(self.retention_days)

        excluded_sql = ""
        params: list = [start_date]
        if self.excluded_users:
            marks = ", ".join("?" for _ in self.excluded_users)
            excluded_sql = f"AND LOWER(username) NOT IN ({marks})"
            params.extend(self.excluded_users)

        query = f"""
            SELECT
                LOWER(username) AS username,
                DATE(timestamp / 1000, 'unixepoch') AS date,
                COUNT(*) AS message_count,
                SUM(COALESCE(word_count, 0)) AS word_count,
                MIN(timestamp) AS first_message_time,
                MAX(timestamp) AS last_message_time
            FROM messages
            WHERE DATE(timestamp / 1000, 'unixepoch') >= ?
                {excluded_sql}
                AND username NOT LIKE '[%]'
            GROUP BY LOWER(username), DATE(timestamp / 1000, 'unixepoch')
            ORDER BY date, username
        """

        async def _upsert(row: dict, tx) -> None:
            await tx.run(
                """
                INSERT INTO user_daily_activity
                (username, date, message_count, word_count, first_message_time, last_message_time)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(username, date) DO UPDATE SET
                    message_count = excluded.message_count,
                    word_count = excluded.word_count,
                    first_message_time = excluded.first_message_time,
                    last_message_time = excluded.last_message_time,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (row["username"], row["date"], row["message_count"], row["word_count"] or 0,
                 row["first_message_time"], row["last_message_time"]),
            )

        processed = await self.process_batch(query, params, self.batch_size, _upsert)
        self._logger.info(
            "[%s] Upserted %d user-day records since %s", self.name, processed, start_date,
        )

        pruned = await self._db.run(
            "DELETE FROM user_daily_activity WHERE date < ?",
            (self._cutoff(self.retention_days),),
        )
        if pruned.rowcount:
            self._logger.debug("[%s] Pruned %d expired rows", self.name, pruned.rowcount)
        return processed

    # ══════════════════════════════════════════════════════════
    #  Queries
    # ══════════════════════════════════════════════════════════

    async def get_daily_activity_stats(self, username: str, days: int = 30) -> list[dict]:
        return await self._db.all(
            """
            SELECT date, message_count, word_count, first_message_time, last_message_time
            FROM user_daily_activity
            WHERE username = ? AND date >= ?
            ORDER BY date DESC
            """,
            (username.lower(), self._cutoff(days)),
        )

    async def get_weekly_pattern(self, username: str) -> list[dict]:
        """Average activity per weekday (0 = Sunday)."""
        return await self._db.all(
            """
            SELECT
                CAST(strftime('%w', date) AS INTEGER) AS day_of_week,
                AVG(message_count) AS avg_messages,
                AVG(word_count) AS avg_words,
                COUNT(*) AS days_active
            FROM user_daily_activity
            WHERE username = ?
            GROUP BY day_of_week
            ORDER BY day_of_week
            """,
            (username.lower(),),
        )

    async def get_most_active_days(self, limit: int = 10) -> list[dict]:
        return await self._db.all(
            """
            SELECT
                date,
                COUNT(DISTINCT username) AS unique_users,
                SUM(message_count) AS total_messages,
                SUM(word_count) AS total_words
            FROM user_daily_activity
            GROUP BY date
            ORDER BY total_messages DESC
            LIMIT ?
            """,
            (limit,),
        )
