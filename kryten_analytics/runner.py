"""One-shot analyzer runner: ``kryten-analytics-run [analyzers...] [options]``.

Runs the selected analyzers once against the configured database, or
prints the cache table status. Completed runs exit 0 even when an
analyzer failed; an unknown analyzer key exits 1.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

from .analyzers import ANALYZER_ORDER, ANALYZERS, get_cache_status, run_all_analyzers_once
from .config import AnalyticsConfig, load_config
from .database import AnalyticsDatabase

ANALYZER_HELP = """\
analyzers:
  word         count words in all messages
  activity     track daily user activity
  streak       calculate chat streaks
  hours        analyze active hours patterns
  content      analyze message content (emojis, caps, etc)
  achievement  calculate and award achievements
  all          run all analyzers in sequence (default)

examples:
  kryten-analytics-run all
  kryten-analytics-run word activity
  kryten-analytics-run --status
  kryten-analytics-run all --timezone 10
"""

CONFIG_CANDIDATES = (
    "/etc/kryten/kryten-analytics/config.yaml",
    "./config.yaml",
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kryten-analytics-run",
        description="Run chat analyzers once",
        epilog=ANALYZER_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("analyzers", nargs="*", metavar="analyzer", help="Analyzers to run")
    parser.add_argument("--timezone", type=int, default=None, metavar="N",
                        help="Timezone offset in hours (default: from config, else 0)")
    parser.add_argument("--status", action="store_true", help="Show cache table status only")
    parser.add_argument("--config", type=str, help="Path to config.yaml")
    parser.add_argument("--log-level", type=str, default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def resolve_config_path(explicit: str | None) -> str | None:
    if explicit:
        return explicit
    for candidate in CONFIG_CANDIDATES:
        if Path(candidate).exists():
            return candidate
    return None


def select_analyzers(names: list[str]) -> list[str]:
    """Resolve CLI names to analyzer keys in run order. Raises ValueError on unknown names."""
    if not names or "all" in names:
        return list(ANALYZER_ORDER)
    unknown = [n for n in names if n not in ANALYZERS]
    if unknown:
        raise ValueError(f"Unknown analyzers: {', '.join(unknown)}")
    return [key for key in ANALYZER_ORDER if key in names]


def print_status(status: dict[str, dict]) -> None:
    print("\nCache Table Status:\n")
    for table, info in status.items():
        print(f"{table}:")
        print(f"  Records: {info['record_count']}")
        print(f"  Last Update: {info['last_update'] or 'Never'}")
        if info.get("error"):
            print(f"  Error: {info['error']}")
        print()


async def _print_stats(run) -> None:
    """A few headline numbers after selected analyzers."""
    job = run.job
    if run.key == "word":
        stats = await job.get_word_count_stats()
        summary = stats["summary"] or {}
        print(f"   Total words: {summary.get('total_words', 0)}")
        print(f"   Average words per message: {round(summary.get('avg_words_per_message') or 0)}")
    elif run.key == "streak":
        summary = (await job.get_streak_stats())["summary"] or {}
        print(f"   Active streaks: {summary.get('active_streaks') or 0}")
        print(f"   Longest current streak: {summary.get('longest_current') or 0} days")
    elif run.key == "achievement":
        recent = await job.get_recent_achievements(5)
        print(f"   Recent achievements: {len(recent)}")


async def run(config: AnalyticsConfig, keys: list[str], status_only: bool = False) -> int:
    logger = logging.getLogger("analytics")
    db = AnalyticsDatabase(config.database.path, logger)
    await db.initialize()

    if status_only:
        print_status(await get_cache_status(db))
        return 0

    await db.sync_achievement_definitions(
        [d.model_dump() for d in config.achievements.definitions]
    )

    print(f"\nRunning {len(keys)} analyzer(s)...\n")
    start = time.monotonic()
    runs = await run_all_analyzers_once(db, config, keys)

    total = 0
    for r in runs:
        if r.ok:
            print(f"OK   {r.name}: {r.result.records_processed} records processed")
            total += r.result.records_processed
            try:
                await _print_stats(r)
            except Exception as e:
                logger.warning("Could not read stats for %s: %s", r.name, e)
        else:
            print(f"FAIL {r.name}: {r.error}")

    elapsed = round(time.monotonic() - start)
    failed = sum(1 for r in runs if not r.ok)
    print(f"\nAll analyzers completed in {elapsed}s ({total} total records processed"
          f"{f', {failed} failed' if failed else ''})\n")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)
    logger = logging.getLogger("analytics")

    try:
        keys = select_analyzers(args.analyzers)
    except ValueError as e:
        logger.error("%s", e)
        print(f"{e}\nRun with --help to see available analyzers")
        return 1

    config_path = resolve_config_path(args.config)
    if not config_path:
        logger.error("No config file found. Use --config or place config.yaml in CWD.")
        return 1
    try:
        config = load_config(config_path)
    except Exception as e:
        logger.error("Config load failed: %s", e)
        return 1

    if args.timezone is not None:
        config = config.model_copy(update={"timezone_offset_hours": args.timezone})

    try:
        return asyncio.run(run(config, keys, status_only=args.status))
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
