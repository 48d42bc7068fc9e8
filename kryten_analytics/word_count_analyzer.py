"""Word count analyzer: fills ``messages.word_count`` and user word totals."""

from __future__ import annotations

import re
import time

from .batch_job import BatchJob

URL_PATTERN = re.compile(r"https?://\S+|www\.\S+")
MENTION_PATTERN = re.compile(r"@[a-zA-Z0-9_-]+")
EMOJI_PATTERN = re.compile(
    "[\U0001F600-\U0001F64F\U0001F300-\U0001F5FF\U0001F680-\U0001F6FF"
    "\U0001F1E0-\U0001F1FF\u2600-\u26FF\u2700-\u27BF]"
)
WORD_PATTERN = re.compile(r"\b[\w']+\b")


def count_words(message: str | None) -> int:
    """Count words the way chat reads them.

    URLs and @mentions count as one word each, emoji are dropped, and a
    single character only counts for digits or the words "a" and "I".
    """
    if not message or not isinstance(message, str):
        return 0
    processed = message.strip()
    if not processed:
        return 0

    processed = URL_PATTERN.sub("URL", processed)
    processed = MENTION_PATTERN.sub("MENTION", processed)
    processed = EMOJI_PATTERN.sub("", processed)

    count = 0
    for word in WORD_PATTERN.findall(processed):
        if "'" in word or word.isdigit() or len(word) > 1 or word in ("a", "A", "i", "I"):
            count += 1
    return count


class WordCountAnalyzer(BatchJob):
    """Backfills word counts for messages recorded without one."""

    name = "WordCountAnalyzer"

    def __init__(self, database, logger=None, clock=None, page_delay_seconds=0.1,
                 batch_size: int = 1000, progress_every: int = 10000) -> None:
        super().__init__(database, logger, clock, page_delay_seconds)
        self.batch_size = batch_size
        self.progress_every = progress_every

    async def execute(self) -> int:
        bounds = await self._db.get(
            "SELECT COUNT(*) AS cnt, MIN(id) AS first_id, MAX(id) AS last_id "
            "FROM messages WHERE word_count IS NULL"
        )
        pending = bounds["cnt"] if bounds else 0
        if not pending:
            self._logger.info("[%s] No messages need word count processing", self.name)
            return 0

        self._logger.info("[%s] Processing %d messages", self.name, pending)
        start = time.monotonic()
        counted = 0
        words = 0

        async def _count(row: dict, tx) -> None:
            nonlocal counted, words
            # Rows in the id window that were counted elsewhere keep their value
            if row["word_count"] is not None:
                return
            n = count_words(row["message"])
            await tx.run("UPDATE messages SET word_count = ? WHERE id = ?", (n, row["id"]))
            counted += 1
            words += n
            if self.progress_every and counted % self.progress_every == 0:
                elapsed = max(time.monotonic() - start, 1e-6)
                rate = counted / elapsed
                self._logger.info(
                    "[%s] Progress: %d/%d (%d%%) Rate: %d msg/s, ETA: %ds",
                    self.name, counted, pending, counted * 100 // pending,
                    rate, (pending - counted) / rate,
                )

        # The id window keeps pages stable while rows leave the NULL set
        await self.process_batch(
            "SELECT id, message, word_count FROM messages WHERE id BETWEEN ? AND ? ORDER BY id",
            [bounds["first_id"], bounds["last_id"]],
            self.batch_size,
            _count,
        )

        await self.update_user_word_counts()
        self._logger.info("[%s] %d messages processed, %d words counted", self.name, counted, words)
        return counted

    async def update_user_word_counts(self) -> None:
        """Recompute ``user_stats.total_words`` for users that already have a stats row.

        Rows are only ever created by the message recorder, which skips
        excluded accounts.
        """
        async with self._db.transaction() as tx:
            await tx.run("""
                UPDATE user_stats SET
                    total_words = (
                        SELECT COALESCE(SUM(m.word_count), 0) FROM messages m
                        WHERE LOWER(m.username) = user_stats.username
                    ),
                    updated_at = CURRENT_TIMESTAMP
            """)

    async def get_word_count_stats(self) -> dict:
        summary = await self._db.get("""
            SELECT
                COUNT(*) AS total_messages,
                COUNT(word_count) AS processed_messages,
                COALESCE(SUM(word_count), 0) AS total_words,
                COALESCE(AVG(word_count), 0) AS avg_words_per_message,
                MAX(word_count) AS max_words
            FROM messages
        """)
        top_users = await self._db.all("""
            SELECT username, total_words, message_count,
                   ROUND(CAST(total_words AS REAL) / message_count, 2) AS avg_words_per_message
            FROM user_stats
            WHERE total_words > 0 AND message_count > 0
            ORDER BY total_words DESC
            LIMIT 10
        """)
        return {"summary": summary, "top_users": top_users}
