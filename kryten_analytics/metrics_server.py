"""Prometheus metrics server for kryten-analytics.

Subclasses BaseMetricsServer from kryten-py to expose batch job and
message log metrics plus health details.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING

from kryten import BaseMetricsServer

from .scheduler import JobCompleted, JobFailed, JobObserver, JobStatus

if TYPE_CHECKING:
    from .main import AnalyticsApp


class JobMetrics(JobObserver):
    """Counts job runs as the scheduler reports them."""

    def __init__(self) -> None:
        self.runs: Counter[str] = Counter()
        self.failures: Counter[str] = Counter()
        self.records: Counter[str] = Counter()
        self.last_duration_ms: dict[str, int] = {}

    async def on_job_completed(self, event: JobCompleted) -> None:
        self.runs[event.name] += 1
        self.records[event.name] += event.records_processed
        self.last_duration_ms[event.name] = event.duration_ms

    async def on_job_failed(self, event: JobFailed) -> None:
        self.runs[event.name] += 1
        self.failures[event.name] += 1
        self.last_duration_ms[event.name] = event.duration_ms


class AnalyticsMetricsServer(BaseMetricsServer):
    """Analytics-specific Prometheus metrics endpoint."""

    def __init__(self, app: AnalyticsApp, port: int = 28287) -> None:
        super().__init__(
            service_name="analytics",
            port=port,
            client=app.client,
            logger=app.logger,
        )
        self._app = app

    async def _collect_custom_metrics(self) -> list[str]:
        lines: list[str] = []
        job_metrics = self._app.job_metrics

        # ── Counters ─────────────────────────────────────────
        lines.append(f"analytics_messages_recorded_total {self._app.messages_recorded}")
        lines.append(f"analytics_commands_processed_total {self._app.commands_processed}")
        lines.append(f"analytics_messages_stored {await self._app.db.get_message_count()}")

        # ── Per-job ──────────────────────────────────────────
        for state in await self._app.scheduler.get_all_job_statuses():
            name = state["job_name"]
            tag = f'job="{name}"'
            lines.append(f"analytics_job_runs_total{{{tag}}} {job_metrics.runs[name]}")
            lines.append(f"analytics_job_failures_total{{{tag}}} {job_metrics.failures[name]}")
            lines.append(f"analytics_job_records_total{{{tag}}} {job_metrics.records[name]}")
            lines.append(f"analytics_job_error_count{{{tag}}} {state['error_count'] or 0}")
            if name in job_metrics.last_duration_ms:
                lines.append(
                    f"analytics_job_last_duration_ms{{{tag}}} {job_metrics.last_duration_ms[name]}"
                )
            for status in JobStatus:
                value = 1 if state["status"] == status.value else 0
                lines.append(f'analytics_job_status{{{tag},status="{status.value}"}} {value}')

        return lines

    async def _get_health_details(self) -> dict:
        scheduler = self._app.scheduler
        return {
            "database": "connected" if self._app.db else "disconnected",
            "scheduler_running": bool(scheduler and scheduler.is_running),
            "jobs_registered": len(scheduler.job_names) if scheduler else 0,
        }
