"""Analyzer wiring: builds the chat analyzers from config and registers them.

Order matters. Streaks read daily activity, content analysis reads word
counts, and achievements read every other table, so jobs are always
registered and run in ``ANALYZER_ORDER``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Callable, Iterable

from .active_hours_analyzer import ActiveHoursAnalyzer
from .batch_job import BatchJob, JobResult
from .chat_achievement_calculator import ChatAchievementCalculator
from .chat_streak_calculator import ChatStreakCalculator
from .daily_activity_tracker import DailyActivityTracker
from .message_content_analyzer import MessageContentAnalyzer
from .utils import Clock
from .word_count_analyzer import WordCountAnalyzer

if TYPE_CHECKING:
    from .config import AnalyticsConfig
    from .database import AnalyticsDatabase
    from .scheduler import JobScheduler

logger = logging.getLogger("analytics.analyzers")

ANALYZER_ORDER = ("word", "activity", "streak", "hours", "content", "achievement")


# ── Short key → job factory ─────────────────────────────────

def _word(db, config, clock):
    return WordCountAnalyzer(
        db, clock=clock, page_delay_seconds=config.batch.page_delay_seconds,
        batch_size=config.word_count.batch_size,
        progress_every=config.word_count.progress_every,
    )


def _activity(db, config, clock):
    return DailyActivityTracker(
        db, clock=clock, page_delay_seconds=config.batch.page_delay_seconds,
        excluded_users=config.excluded_users,
        retention_days=config.daily_activity.retention_days,
        batch_size=config.daily_activity.batch_size,
    )


def _streak(db, config, clock):
    return ChatStreakCalculator(
        db, clock=clock, timezone_offset_hours=config.timezone_offset_hours,
    )


def _hours(db, config, clock):
    return ActiveHoursAnalyzer(
        db, clock=clock, excluded_users=config.excluded_users,
        timezone_offset_hours=config.timezone_offset_hours,
    )


def _content(db, config, clock):
    analysis = config.content_analysis
    return MessageContentAnalyzer(
        db, clock=clock, excluded_users=config.excluded_users,
        vocabulary_limit=analysis.vocabulary_limit,
        caps_ratio=analysis.caps_ratio,
        caps_min_letters=analysis.caps_min_letters,
    )


def _achievement(db, config, clock):
    return ChatAchievementCalculator(db, clock=clock, excluded_users=config.excluded_users)


ANALYZERS: dict[str, Callable[..., BatchJob]] = {
    "word": _word,
    "activity": _activity,
    "streak": _streak,
    "hours": _hours,
    "content": _content,
    "achievement": _achievement,
}


def build_analyzer(
    key: str, database: AnalyticsDatabase, config: AnalyticsConfig, clock: Clock | None = None,
) -> BatchJob:
    """Construct the analyzer for a short key (``word``, ``streak``, ...)."""
    try:
        factory = ANALYZERS[key]
    except KeyError:
        raise ValueError(f"Unknown analyzer: {key}") from None
    return factory(database, config, clock or Clock())


def register_chat_analyzers(
    scheduler: JobScheduler,
    database: AnalyticsDatabase,
    config: AnalyticsConfig,
    clock: Clock | None = None,
) -> list[BatchJob]:
    """Register all six analyzers on *scheduler* in dependency order."""
    interval = timedelta(hours=config.scheduler.interval_hours)
    jobs = [build_analyzer(key, database, config, clock) for key in ANALYZER_ORDER]
    for job in jobs:
        scheduler.register(job.name, job.run, interval)
    logger.info(
        "Registered %d chat analyzers with %g hour intervals",
        len(jobs), config.scheduler.interval_hours,
    )
    return jobs


# ══════════════════════════════════════════════════════════
#  One-shot runs
# ══════════════════════════════════════════════════════════

@dataclass
class AnalyzerRun:
    key: str
    job: BatchJob
    result: JobResult | None = None
    error: Exception | None = None

    @property
    def name(self) -> str:
        return self.job.name

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_all_analyzers_once(
    database: AnalyticsDatabase,
    config: AnalyticsConfig,
    keys: Iterable[str] | None = None,
    clock: Clock | None = None,
) -> list[AnalyzerRun]:
    """Run the selected analyzers (default: all) once, in dependency order.

    A failing analyzer is logged and recorded; the rest still run.
    """
    selected = set(keys) if keys is not None else set(ANALYZER_ORDER)
    unknown = selected - set(ANALYZERS)
    if unknown:
        raise ValueError(f"Unknown analyzers: {', '.join(sorted(unknown))}")

    runs: list[AnalyzerRun] = []
    for key in ANALYZER_ORDER:
        if key not in selected:
            continue
        job = build_analyzer(key, database, config, clock)
        run = AnalyzerRun(key=key, job=job)
        logger.info("Running %s...", job.name)
        try:
            run.result = await job.run()
            logger.info(
                "%s completed: %d records processed", job.name, run.result.records_processed,
            )
        except Exception as e:
            run.error = e
            logger.error("Failed to run %s: %s", job.name, e)
        runs.append(run)
    return runs


# ══════════════════════════════════════════════════════════
#  Cache status
# ══════════════════════════════════════════════════════════

# table, non-null key column, timestamp column
CACHE_TABLES = (
    ("user_stats", "total_words", "updated_at"),
    ("user_daily_activity", "message_count", "updated_at"),
    ("user_chat_streaks", "current_streak", "updated_at"),
    ("user_active_hours", "message_count", "updated_at"),
    ("message_analysis_cache", "total_messages", "updated_at"),
    ("chat_achievements", "achievement_type", "created_at"),
)


async def get_cache_status(database: AnalyticsDatabase) -> dict[str, dict]:
    """Record count and last update per derived table. Errors are reported per table."""
    status: dict[str, dict] = {}
    for table, key, stamp in CACHE_TABLES:
        try:
            row = await database.get(
                f"SELECT COUNT({key}) AS record_count, MAX({stamp}) AS last_update FROM {table}"
            )
            status[table] = {
                "record_count": (row or {}).get("record_count") or 0,
                "last_update": (row or {}).get("last_update"),
            }
        except Exception as e:
            status[table] = {"record_count": 0, "last_update": None, "error": str(e)}
    return status
