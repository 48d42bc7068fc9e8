"""CLI entry point for kryten-analytics."""
import argparse
import asyncio
import logging
import signal
import sys

from .config import load_config
from .main import AnalyticsApp
from .runner import resolve_config_path, setup_logging


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Kryten Analytics: Chat Statistics Service")
    parser.add_argument("--config", type=str, help="Path to config.yaml")
    parser.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--validate-config", action="store_true", help="Validate config and exit without starting")
    return parser.parse_args(argv)


def validate(config_path: str, logger: logging.Logger) -> bool:
    try:
        config = load_config(config_path)
    except Exception as e:
        logger.error("Config validation failed: %s", e)
        return False
    logger.info(
        "Config is valid: database %s, analyzers every %g hours, %d achievement definitions",
        config.database.path, config.scheduler.interval_hours,
        len(config.achievements.definitions),
    )
    return True


async def main_async(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger = logging.getLogger("analytics")

    config_path = resolve_config_path(args.config)
    if not config_path:
        logger.error("No config file found. Use --config or place config.yaml in CWD.")
        sys.exit(1)

    if args.validate_config:
        if not validate(config_path, logger):
            sys.exit(1)
        return

    app = AnalyticsApp(config_path)

    # Unix only; Windows falls back to KeyboardInterrupt
    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(app.stop()))

    try:
        await app.start()
    except KeyboardInterrupt:
        pass
    finally:
        await app.stop()


def main() -> None:
    """Sync entry point for pyproject.toml [project.scripts]."""
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
