"""Service orchestrator: AnalyticsApp.

Follows the canonical kryten-py microservice pattern:
config → DB init → register handlers → connect → metrics → commands →
scheduler → run.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from kryten import KrytenClient

from . import __version__
from .analyzers import ANALYZER_ORDER, register_chat_analyzers
from .batch_job import BatchJob
from .command_handler import COMMAND_SUBJECT, CommandHandler
from .config import AnalyticsConfig, load_config
from .database import AnalyticsDatabase
from .message_recorder import MessageRecorder
from .metrics_server import AnalyticsMetricsServer, JobMetrics
from .scheduler import JobScheduler
from .utils import Clock


class AnalyticsApp:
    """Top-level application orchestrator."""

    def __init__(self, config_path: str, clock: Clock | None = None) -> None:
        self.config_path = Path(config_path)
        self.logger = logging.getLogger("analytics")
        self.clock = clock or Clock()

        # Components (initialized in start())
        self.config: AnalyticsConfig | None = None
        self.client: KrytenClient | None = None
        self.db: AnalyticsDatabase | None = None
        self.scheduler: JobScheduler | None = None
        self.recorder: MessageRecorder | None = None
        self.command_handler: CommandHandler | None = None
        self.metrics_server: AnalyticsMetricsServer | None = None
        self.job_metrics = JobMetrics()
        self.jobs: dict[str, BatchJob] = {}

        # State
        self._running = False
        self._start_time: float | None = None

        # Counters (for metrics)
        self.commands_processed: int = 0

    @property
    def messages_recorded(self) -> int:
        return self.recorder.messages_recorded if self.recorder else 0

    @property
    def uptime_seconds(self) -> float:
        if self._start_time is None:
            return 0.0
        return time.time() - self._start_time

    async def setup(self) -> None:
        """Load config and bring up storage and the scheduler (no network)."""
        self.config = load_config(str(self.config_path))
        self.logger.info("Config loaded: %d channel(s)", len(self.config.channels))

        # PersistenceUnavailableError here is fatal
        self.db = AnalyticsDatabase(self.config.database.path, self.logger)
        self.scheduler = JobScheduler(
            self.db,
            logger=logging.getLogger("analytics.scheduler"),
            clock=self.clock,
            shutdown_poll_seconds=self.config.scheduler.shutdown_poll_seconds,
        )
        await self.scheduler.init()
        synced = await self.db.sync_achievement_definitions(
            [d.model_dump() for d in self.config.achievements.definitions]
        )
        self.logger.info("Database initialized: %s (%d achievement definitions)",
                         self.config.database.path, synced)

        jobs = register_chat_analyzers(self.scheduler, self.db, self.config, self.clock)
        self.jobs = dict(zip(ANALYZER_ORDER, jobs))
        self.scheduler.add_observer(self.job_metrics)

        self.recorder = MessageRecorder(
            self.db, self.config.excluded_users,
            logger=logging.getLogger("analytics.recorder"), clock=self.clock,
        )

    async def start(self) -> None:
        """Start the analytics service, canonical kryten-py sequence."""
        self.logger.info("Starting kryten-analytics...")
        self._start_time = time.time()

        # 1-3. Config, database, scheduler registry
        await self.setup()

        if self.config.scheduler.run_on_startup:
            self.logger.info("Running initial chat analysis...")
            # Through the scheduler, so each run is recorded and start() arms
            # the next one an interval out instead of running it again
            for name in self.scheduler.job_names:
                await self.scheduler.run_job_now(name)

        # 4. Create KrytenClient
        self.client = KrytenClient(self.config)

        # 5. Register event handlers BEFORE connect
        @self.client.on("chatmsg")
        async def handle_chatmsg(event):
            try:
                await self.recorder.record(
                    event.username, event.channel, event.message,
                    getattr(event, "timestamp", None),
                )
            except Exception:
                self.logger.exception("chatmsg handler error for %s", getattr(event, "username", "?"))

        # 6. Connect to NATS
        await self.client.connect()
        self.logger.info("Connected to NATS")

        # 7. Start metrics server
        metrics_port = self.config.metrics.port if self.config.metrics else 28287
        self.metrics_server = AnalyticsMetricsServer(self, port=metrics_port)
        await self.metrics_server.start()
        self.logger.info("Metrics server started on port %d", metrics_port)

        # 8. Start command handler
        self.command_handler = CommandHandler(self, self.client, self.logger)
        await self.command_handler.connect()
        self.logger.info("Command handler ready on %s", COMMAND_SUBJECT)

        # 9. Start batch scheduler
        await self.scheduler.start()

        # 10. Mark running
        self._running = True
        self.logger.info("kryten-analytics started successfully (v%s)", __version__)

        # 11. Block on client event loop
        await self.client.run()

    async def stop(self) -> None:
        """Gracefully shut down all components in reverse order."""
        if not self._running:
            return
        self.logger.info("Shutting down kryten-analytics...")
        self._running = False

        if self.scheduler:
            await self.scheduler.stop(timeout=self.config.scheduler.shutdown_timeout_seconds)
        if self.metrics_server:
            await self.metrics_server.stop()
        if self.client:
            await self.client.stop()

        self.logger.info("kryten-analytics stopped.")
