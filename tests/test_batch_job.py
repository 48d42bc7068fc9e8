"""Tests for kryten_analytics.batch_job module."""

from __future__ import annotations

import pytest

from kryten_analytics.batch_job import BatchJob, JobResult
from kryten_analytics.database import AnalyticsDatabase
from kryten_analytics.errors import TransactionError


class CountingDatabase:
    """Wraps a real database and counts opened transactions."""

    def __init__(self, db: AnalyticsDatabase) -> None:
        self._db = db
        self.transactions = 0

    def transaction(self):
        self.transactions += 1
        return self._db.transaction()

    def __getattr__(self, name):
        return getattr(self._db, name)


class SimpleJob(BatchJob):
    name = "SimpleJob"

    def __init__(self, database, records=3, fail=False):
        super().__init__(database, page_delay_seconds=0)
        self.records = records
        self.fail = fail

    async def execute(self) -> int:
        if self.fail:
            raise RuntimeError("execute failed")
        return self.records


async def _seed(db: AnalyticsDatabase, n: int) -> None:
    async with db.transaction() as tx:
        await tx.run_many(
            "INSERT INTO messages (username, message, timestamp) VALUES (?, ?, ?)",
            [(f"user{i}", "x", i) for i in range(n)],
        )


class TestRun:

    async def test_run_returns_result(self, database: AnalyticsDatabase):
        result = await SimpleJob(database, records=7).run()
        assert isinstance(result, JobResult)
        assert result.records_processed == 7
        assert result.duration_ms >= 0

    async def test_run_reraises(self, database: AnalyticsDatabase):
        with pytest.raises(RuntimeError, match="execute failed"):
            await SimpleJob(database, fail=True).run()

    async def test_execute_is_abstract(self, database: AnalyticsDatabase):
        with pytest.raises(NotImplementedError):
            await BatchJob(database).execute()


class TestProcessBatch:

    async def test_pages_and_transactions(self, database: AnalyticsDatabase):
        """250 rows with batch size 100 → 3 transactions (100, 100, 50)."""
        await _seed(database, 250)
        counting = CountingDatabase(database)
        job = SimpleJob(counting)
        pages: list[int] = []
        seen: list[int] = []

        async def processor(row, tx):
            seen.append(row["id"])
            await tx.run("UPDATE messages SET word_count = 1 WHERE id = ?", (row["id"],))

        original = counting.transaction

        def tracking_transaction():
            pages.append(len(seen))
            return original()

        counting.transaction = tracking_transaction
        total = await job.process_batch("SELECT id FROM messages ORDER BY id", [], 100, processor)

        assert total == 250
        assert counting.transactions == 3
        assert pages == [0, 100, 200]
        assert len(set(seen)) == 250
        row = await database.get("SELECT COUNT(*) AS c FROM messages WHERE word_count = 1")
        assert row["c"] == 250

    async def test_exact_multiple_stops_on_empty_page(self, database: AnalyticsDatabase):
        await _seed(database, 200)
        counting = CountingDatabase(database)
        total = await SimpleJob(counting).process_batch(
            "SELECT id FROM messages ORDER BY id", [], 100, _noop,
        )
        assert total == 200
        assert counting.transactions == 2

    async def test_no_rows(self, database: AnalyticsDatabase):
        counting = CountingDatabase(database)
        total = await SimpleJob(counting).process_batch(
            "SELECT id FROM messages ORDER BY id", [], 100, _noop,
        )
        assert total == 0
        assert counting.transactions == 0

    async def test_failure_rolls_back_page(self, database: AnalyticsDatabase):
        """A failing row rolls back its page; earlier pages stay committed."""
        await _seed(database, 150)

        async def processor(row, tx):
            if row["id"] == 120:
                raise ValueError("bad row")
            await tx.run("UPDATE messages SET word_count = 1 WHERE id = ?", (row["id"],))

        with pytest.raises(TransactionError) as exc_info:
            await SimpleJob(database).process_batch(
                "SELECT id FROM messages ORDER BY id", [], 100, processor,
            )
        assert isinstance(exc_info.value.cause, ValueError)
        row = await database.get("SELECT COUNT(*) AS c FROM messages WHERE word_count = 1")
        assert row["c"] == 100

    async def test_params_are_passed(self, database: AnalyticsDatabase):
        await _seed(database, 10)
        total = await SimpleJob(database).process_batch(
            "SELECT id FROM messages WHERE id > ? ORDER BY id", [5], 3, _noop,
        )
        assert total == 5

    async def test_rejects_bad_batch_size(self, database: AnalyticsDatabase):
        with pytest.raises(ValueError):
            await SimpleJob(database).process_batch("SELECT 1", [], 0, _noop)


class TestUpdateCache:

    async def test_upsert(self, database: AnalyticsDatabase):
        job = SimpleJob(database)
        async with database.transaction() as tx:
            await job.update_cache(tx, "user_chat_streaks", "username",
                                   {"username": "a", "current_streak": 1, "best_streak": 2})
        async with database.transaction() as tx:
            await job.update_cache(tx, "user_chat_streaks", "username",
                                   {"username": "a", "current_streak": 3, "best_streak": 3})
        rows = await database.all("SELECT * FROM user_chat_streaks")
        assert len(rows) == 1
        assert rows[0]["current_streak"] == 3
        assert rows[0]["updated_at"] is not None


async def _noop(row, tx):
    return None
