"""SQLite database module for kryten-analytics.

Each public method is async and wraps a synchronous inner function via
asyncio.run_in_executor(None, _sync). A new connection is created per call
(WAL mode, 30s busy timeout, Row factory). ``transaction()`` pins one
connection for the lifetime of an explicit BEGIN/COMMIT block.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Any, NamedTuple, Sequence

from .errors import PersistenceUnavailableError, TransactionError

Params = Sequence[Any]


class RunResult(NamedTuple):
    lastrowid: int | None
    rowcount: int


class AnalyticsDatabase:
    """SQLite-backed persistence for the analytics microservice."""

    def __init__(self, db_path: str, logger: logging.Logger) -> None:
        self._db_path = db_path
        self._logger = logger

    def _get_connection(self, autocommit: bool = False) -> sqlite3.Connection:
        """Create a new SQLite connection with standard settings."""
        conn = sqlite3.connect(
            self._db_path,
            timeout=30,
            check_same_thread=False,
            isolation_level=None if autocommit else "",
        )
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=30000")
        conn.row_factory = sqlite3.Row
        return conn

    # ══════════════════════════════════════════════════════════
    #  Initialization
    # ══════════════════════════════════════════════════════════

    async def initialize(self) -> None:
        """Create all tables and indexes. Idempotent.

        Raises PersistenceUnavailableError if the database cannot be opened.
        """
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._create_tables)
        except sqlite3.Error as e:
            raise PersistenceUnavailableError(self._db_path, e) from e

    def _create_tables(self) -> None:
        conn = self._get_connection()
        try:
            # ── Message log ──────────────────────────────────
            conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL,
                    channel TEXT,
                    message TEXT,
                    timestamp INTEGER NOT NULL,
                    word_count INTEGER DEFAULT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_stats (
                    username TEXT PRIMARY KEY,
                    message_count INTEGER DEFAULT 0,
                    total_words INTEGER DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_messages_timestamp ON messages(timestamp)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_messages_username ON messages(username)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_messages_word_count "
                "ON messages(word_count) WHERE word_count IS NULL"
            )

            # ── Scheduler state ──────────────────────────────
            conn.execute("""
                CREATE TABLE IF NOT EXISTS batch_jobs (
                    job_name TEXT PRIMARY KEY,
                    last_run INTEGER,
                    next_run INTEGER,
                    status TEXT DEFAULT 'idle',
                    error_count INTEGER DEFAULT 0,
                    last_error TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS batch_job_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_name TEXT NOT NULL,
                    started_at INTEGER NOT NULL,
                    completed_at INTEGER,
                    status TEXT NOT NULL,
                    records_processed INTEGER DEFAULT 0,
                    error_message TEXT,
                    duration_ms INTEGER,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_batch_job_history_job "
                "ON batch_job_history(job_name, id)"
            )
            conn.execute("""
                CREATE TABLE IF NOT EXISTS batch_scheduler_state (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    registered_jobs TEXT,
                    stopped_at INTEGER,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            # ── Derived statistics ───────────────────────────
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_daily_activity (
                    username TEXT NOT NULL,
                    date TEXT NOT NULL,
                    message_count INTEGER DEFAULT 0,
                    word_count INTEGER DEFAULT 0,
                    first_message_time INTEGER,
                    last_message_time INTEGER,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (username, date)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_user_daily_activity_date "
                "ON user_daily_activity(date)"
            )

            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_chat_streaks (
                    username TEXT PRIMARY KEY,
                    current_streak INTEGER DEFAULT 0,
                    best_streak INTEGER DEFAULT 0,
                    last_active_date TEXT,
                    streak_start_date TEXT,
                    total_active_days INTEGER DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_active_hours (
                    username TEXT NOT NULL,
                    hour INTEGER NOT NULL CHECK (hour >= 0 AND hour <= 23),
                    message_count INTEGER DEFAULT 0,
                    word_count INTEGER DEFAULT 0,
                    avg_message_length REAL DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (username, hour)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_activity_summary (
                    username TEXT PRIMARY KEY,
                    most_active_hour INTEGER,
                    least_active_hour INTEGER,
                    morning_messages INTEGER DEFAULT 0,
                    afternoon_messages INTEGER DEFAULT 0,
                    evening_messages INTEGER DEFAULT 0,
                    night_messages INTEGER DEFAULT 0,
                    night_owl_score REAL DEFAULT 0,
                    early_bird_score REAL DEFAULT 0,
                    consistency_score REAL DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS message_analysis_cache (
                    username TEXT PRIMARY KEY,
                    total_messages INTEGER DEFAULT 0,
                    total_words INTEGER DEFAULT 0,
                    avg_message_length REAL DEFAULT 0,
                    avg_words_per_message REAL DEFAULT 0,
                    emoji_count INTEGER DEFAULT 0,
                    emoji_usage_rate REAL DEFAULT 0,
                    caps_count INTEGER DEFAULT 0,
                    caps_usage_rate REAL DEFAULT 0,
                    question_count INTEGER DEFAULT 0,
                    exclamation_count INTEGER DEFAULT 0,
                    url_count INTEGER DEFAULT 0,
                    mention_count INTEGER DEFAULT 0,
                    longest_message INTEGER DEFAULT 0,
                    shortest_message INTEGER DEFAULT 0,
                    vocabulary_size INTEGER DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_vocabulary (
                    username TEXT NOT NULL,
                    word TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (username, word)
                )
            """)

            # ── Achievements ─────────────────────────────────
            conn.execute("""
                CREATE TABLE IF NOT EXISTS achievement_definitions (
                    type TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT,
                    bronze_threshold INTEGER,
                    silver_threshold INTEGER,
                    gold_threshold INTEGER,
                    diamond_threshold INTEGER,
                    icon TEXT,
                    category TEXT DEFAULT 'chat',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS chat_achievements (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL,
                    achievement_type TEXT NOT NULL,
                    achievement_level TEXT DEFAULT 'bronze',
                    achieved_at INTEGER NOT NULL,
                    details TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(username, achievement_type, achievement_level)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_chat_achievements_username "
                "ON chat_achievements(username)"
            )

            conn.commit()
            self._logger.info("Database tables initialized: %s", self._db_path)
        finally:
            conn.close()

    # ══════════════════════════════════════════════════════════
    #  Query Primitives
    # ══════════════════════════════════════════════════════════

    async def get(self, sql: str, params: Params = ()) -> dict | None:
        """Return the first row as a dict, or None."""
        loop = asyncio.get_running_loop()

        def _sync() -> dict | None:
            conn = self._get_connection()
            try:
                row = conn.execute(sql, tuple(params)).fetchone()
                return dict(row) if row else None
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def all(self, sql: str, params: Params = ()) -> list[dict]:
        """Return all rows as dicts."""
        loop = asyncio.get_running_loop()

        def _sync() -> list[dict]:
            conn = self._get_connection()
            try:
                rows = conn.execute(sql, tuple(params)).fetchall()
                return [dict(r) for r in rows]
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def run(self, sql: str, params: Params = ()) -> RunResult:
        """Execute a write statement and commit it."""
        loop = asyncio.get_running_loop()

        def _sync() -> RunResult:
            conn = self._get_connection()
            try:
                cursor = conn.execute(sql, tuple(params))
                conn.commit()
                return RunResult(cursor.lastrowid, cursor.rowcount)
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    def transaction(self) -> Transaction:
        """Open an explicit transaction: ``async with db.transaction() as tx``."""
        return Transaction(self)

    # ══════════════════════════════════════════════════════════
    #  Message Log
    # ══════════════════════════════════════════════════════════

    async def record_message(
        self,
        username: str,
        channel: str | None,
        message: str,
        timestamp_ms: int,
        word_count: int | None = None,
    ) -> int:
        """Append a chat message and bump the user's message counter.
        Returns the new message id."""
        loop = asyncio.get_running_loop()

        def _sync() -> int:
            conn = self._get_connection()
            try:
                cursor = conn.execute(
                    "INSERT INTO messages (username, channel, message, timestamp, word_count) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (username, channel, message, timestamp_ms, word_count),
                )
                conn.execute(
                    """
                    INSERT INTO user_stats (username, message_count, total_words)
                    VALUES (?, 1, ?)
                    ON CONFLICT(username) DO UPDATE SET
                        message_count = message_count + 1,
                        total_words = total_words + excluded.total_words,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (username.lower(), word_count or 0),
                )
                conn.commit()
                return cursor.lastrowid
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)

    async def get_message_count(self) -> int:
        row = await self.get("SELECT COUNT(*) AS cnt FROM messages")
        return row["cnt"] if row else 0

    # ══════════════════════════════════════════════════════════
    #  Achievement Definitions
    # ══════════════════════════════════════════════════════════

    async def sync_achievement_definitions(self, definitions: list[dict]) -> int:
        """Upsert achievement definitions. Returns the number written."""
        loop = asyncio.get_running_loop()

        def _sync() -> int:
            conn = self._get_connection()
            try:
                conn.executemany(
                    """
                    INSERT INTO achievement_definitions
                    (type, name, description, bronze_threshold, silver_threshold,
                     gold_threshold, diamond_threshold, icon, category)
                    VALUES (:type, :name, :description, :bronze_threshold, :silver_threshold,
                            :gold_threshold, :diamond_threshold, :icon, :category)
                    ON CONFLICT(type) DO UPDATE SET
                        name = excluded.name,
                        description = excluded.description,
                        bronze_threshold = excluded.bronze_threshold,
                        silver_threshold = excluded.silver_threshold,
                        gold_threshold = excluded.gold_threshold,
                        diamond_threshold = excluded.diamond_threshold,
                        icon = excluded.icon,
                        category = excluded.category
                    """,
                    definitions,
                )
                conn.commit()
                return len(definitions)
            finally:
                conn.close()

        return await loop.run_in_executor(None, _sync)


class Transaction:
    """One connection inside BEGIN IMMEDIATE … COMMIT/ROLLBACK.

    Leaving the block normally commits; leaving it with an exception rolls
    back and lets the exception propagate. A failed COMMIT is rolled back and
    raised as TransactionError.
    """

    def __init__(self, database: AnalyticsDatabase) -> None:
        self._db = database
        self._conn: sqlite3.Connection | None = None

    async def __aenter__(self) -> Transaction:
        loop = asyncio.get_running_loop()

        def _open() -> sqlite3.Connection:
            conn = self._db._get_connection(autocommit=True)
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error:
                conn.close()
                raise
            return conn

        try:
            self._conn = await loop.run_in_executor(None, _open)
        except sqlite3.Error as e:
            raise TransactionError(f"Could not begin transaction: {e}", e) from e
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        loop = asyncio.get_running_loop()
        conn = self._conn
        self._conn = None

        def _finish() -> None:
            try:
                if exc_type is None:
                    try:
                        conn.execute("COMMIT")
                    except sqlite3.Error:
                        conn.execute("ROLLBACK")
                        raise
                else:
                    conn.execute("ROLLBACK")
            finally:
                conn.close()

        try:
            await loop.run_in_executor(None, _finish)
        except sqlite3.Error as e:
            if exc_type is None:
                raise TransactionError(f"Commit failed: {e}", e) from e
            self._db._logger.warning("Rollback failed: %s", e)
        return False

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise TransactionError("Transaction is not active")
        return self._conn

    async def get(self, sql: str, params: Params = ()) -> dict | None:
        conn = self._require_conn()
        loop = asyncio.get_running_loop()

        def _sync() -> dict | None:
            row = conn.execute(sql, tuple(params)).fetchone()
            return dict(row) if row else None

        return await loop.run_in_executor(None, _sync)

    async def all(self, sql: str, params: Params = ()) -> list[dict]:
        conn = self._require_conn()
        loop = asyncio.get_running_loop()

        def _sync() -> list[dict]:
            return [dict(r) for r in conn.execute(sql, tuple(params)).fetchall()]

        return await loop.run_in_executor(None, _sync)

    async def run(self, sql: str, params: Params = ()) -> RunResult:
        conn = self._require_conn()
        loop = asyncio.get_running_loop()

        def _sync() -> RunResult:
            cursor = conn.execute(sql, tuple(params))
            return RunResult(cursor.lastrowid, cursor.rowcount)

        return await loop.run_in_executor(None, _sync)

    async def run_many(self, sql: str, seq_of_params: Sequence[Params]) -> int:
        conn = self._require_conn()
        loop = asyncio.get_running_loop()

        def _sync() -> int:
            cursor = conn.executemany(sql, [tuple(p) for p in seq_of_params])
            return cursor.rowcount

        return await loop.run_in_executor(None, _sync)
