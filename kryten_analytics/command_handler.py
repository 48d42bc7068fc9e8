"""Request-reply command handler on kryten.analytics.command.

Provides a NATS request-reply API for job control and for reading the
derived chat statistics.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from . import __version__
from .analyzers import get_cache_status

if TYPE_CHECKING:
    from kryten import KrytenClient

    from .main import AnalyticsApp

COMMAND_SUBJECT = "kryten.analytics.command"


def _limit(request: dict[str, Any], default: int, maximum: int = 100) -> int:
    try:
        value = int(request.get("limit", default))
    except (TypeError, ValueError):
        raise ValueError("limit must be an integer") from None
    return max(1, min(value, maximum))


class CommandHandler:
    """Handles request-reply commands on kryten.analytics.command."""

    def __init__(
        self,
        app: AnalyticsApp,
        client: KrytenClient,
        logger: logging.Logger | None = None,
    ) -> None:
        self._app = app
        self._client = client
        self._logger = logger or logging.getLogger("analytics.command")

    async def connect(self) -> None:
        await self._client.subscribe_request_reply(COMMAND_SUBJECT, self._handle_command)

    async def _handle_command(self, request: dict[str, Any]) -> dict[str, Any]:
        """Route a command request to the appropriate handler."""
        command = request.get("command", "")
        handler = self._HANDLER_MAP.get(command)

        if not handler:
            return {
                "service": "analytics",
                "command": command,
                "success": False,
                "error": f"Unknown command: {command}",
            }

        try:
            result = await handler(self, request)
            self._app.commands_processed += 1
            return {
                "service": "analytics",
                "command": command,
                "success": True,
                "data": result,
            }
        except Exception as e:
            self._logger.exception("Command handler error for %s", command)
            return {
                "service": "analytics",
                "command": command,
                "success": False,
                "error": str(e),
            }

    # ══════════════════════════════════════════════════════════
    #  System
    # ══════════════════════════════════════════════════════════

    async def _handle_ping(self, request: dict[str, Any]) -> dict[str, Any]:
        return {"pong": True, "version": __version__}

    async def _handle_health(self, request: dict[str, Any]) -> dict[str, Any]:
        scheduler = self._app.scheduler
        return {
            "status": "healthy",
            "database": "connected" if self._app.db else "disconnected",
            "scheduler_running": bool(scheduler and scheduler.is_running),
            "jobs_registered": len(scheduler.job_names) if scheduler else 0,
            "messages_recorded": self._app.messages_recorded,
            "uptime_seconds": self._app.uptime_seconds,
        }

    # ══════════════════════════════════════════════════════════
    #  Jobs
    # ══════════════════════════════════════════════════════════

    async def _handle_jobs_status(self, request: dict[str, Any]) -> dict[str, Any]:
        statuses = await self._app.scheduler.get_all_job_statuses()
        return {"jobs": statuses}

    async def _handle_jobs_history(self, request: dict[str, Any]) -> dict[str, Any]:
        job = request.get("job")
        if not job:
            raise ValueError("job is required")
        history = await self._app.scheduler.get_job_history(job, _limit(request, 10))
        return {"job": job, "history": history}

    async def _handle_jobs_run(self, request: dict[str, Any]) -> dict[str, Any]:
        job = request.get("job")
        if not job:
            raise ValueError("job is required")
        started = self._app.scheduler.trigger(job)
        return {"job": job, "started": started}

    async def _handle_cache_status(self, request: dict[str, Any]) -> dict[str, Any]:
        return {"tables": await get_cache_status(self._app.db)}

    # ══════════════════════════════════════════════════════════
    #  Statistics
    # ══════════════════════════════════════════════════════════

    async def _handle_streaks_top(self, request: dict[str, Any]) -> dict[str, Any]:
        rows = await self._app.jobs["streak"].get_top_streaks(_limit(request, 10))
        return {"streaks": rows}

    async def _handle_streaks_stats(self, request: dict[str, Any]) -> dict[str, Any]:
        return await self._app.jobs["streak"].get_streak_stats()

    async def _handle_streaks_at_risk(self, request: dict[str, Any]) -> dict[str, Any]:
        return {"streaks": await self._app.jobs["streak"].get_streaks_at_risk()}

    async def _handle_activity_user(self, request: dict[str, Any]) -> dict[str, Any]:
        username = request.get("username")
        if not username:
            raise ValueError("username is required")
        try:
            days = max(1, min(int(request.get("days", 30)), 365))
        except (TypeError, ValueError):
            raise ValueError("days must be an integer") from None
        rows = await self._app.jobs["activity"].get_daily_activity_stats(username, days)
        return {"username": username.lower(), "days": days, "activity": rows}

    async def _handle_activity_weekly(self, request: dict[str, Any]) -> dict[str, Any]:
        username = request.get("username")
        if not username:
            raise ValueError("username is required")
        rows = await self._app.jobs["activity"].get_weekly_pattern(username)
        return {"username": username.lower(), "weekdays": rows}

    async def _handle_activity_top_days(self, request: dict[str, Any]) -> dict[str, Any]:
        return {"days": await self._app.jobs["activity"].get_most_active_days(_limit(request, 10))}

    async def _handle_hours_user(self, request: dict[str, Any]) -> dict[str, Any]:
        username = request.get("username")
        if not username:
            raise ValueError("username is required")
        rows = await self._app.jobs["hours"].get_user_activity_heatmap(username)
        return {"username": username.lower(), "hours": rows}

    async def _handle_hours_peak(self, request: dict[str, Any]) -> dict[str, Any]:
        return {"hours": await self._app.jobs["hours"].get_global_peak_hours()}

    async def _handle_hours_patterns(self, request: dict[str, Any]) -> dict[str, Any]:
        return await self._app.jobs["hours"].get_time_pattern_users(_limit(request, 10))

    async def _handle_content_user(self, request: dict[str, Any]) -> dict[str, Any]:
        username = request.get("username")
        if not username:
            raise ValueError("username is required")
        stats = await self._app.jobs["content"].get_content_stats(username)
        if not stats:
            return {"found": False}
        return {"found": True, **stats}

    async def _handle_content_leaders(self, request: dict[str, Any]) -> dict[str, Any]:
        content = self._app.jobs["content"]
        limit = _limit(request, 10)
        return {
            "emoji": await content.get_top_emoji_users(limit),
            "caps": await content.get_caps_users(limit),
            "vocabulary": await content.get_vocabulary_leaders(limit),
            "questions": await content.get_question_askers(limit),
        }

    async def _handle_achievements_user(self, request: dict[str, Any]) -> dict[str, Any]:
        username = request.get("username")
        if not username:
            raise ValueError("username is required")
        rows = await self._app.jobs["achievement"].get_user_achievements(username)
        return {"username": username.lower(), "achievements": rows}

    async def _handle_achievements_leaderboard(self, request: dict[str, Any]) -> dict[str, Any]:
        achievement_type = request.get("type")
        if not achievement_type:
            raise ValueError("type is required")
        rows = await self._app.jobs["achievement"].get_achievement_leaderboard(
            achievement_type, _limit(request, 10),
        )
        return {"type": achievement_type, "leaderboard": rows}

    async def _handle_achievements_recent(self, request: dict[str, Any]) -> dict[str, Any]:
        rows = await self._app.jobs["achievement"].get_recent_achievements(_limit(request, 20))
        return {"achievements": rows}

    _HANDLER_MAP: dict[str, Any] = {
        "system.ping": _handle_ping,
        "system.health": _handle_health,
        "jobs.status": _handle_jobs_status,
        "jobs.history": _handle_jobs_history,
        "jobs.run": _handle_jobs_run,
        "cache.status": _handle_cache_status,
        "streaks.top": _handle_streaks_top,
        "streaks.stats": _handle_streaks_stats,
        "streaks.at_risk": _handle_streaks_at_risk,
        "activity.user": _handle_activity_user,
        "activity.weekly": _handle_activity_weekly,
        "activity.top_days": _handle_activity_top_days,
        "hours.user": _handle_hours_user,
        "hours.peak": _handle_hours_peak,
        "hours.patterns": _handle_hours_patterns,
        "content.user": _handle_content_user,
        "content.leaders": _handle_content_leaders,
        "achievements.user": _handle_achievements_user,
        "achievements.leaderboard": _handle_achievements_leaderboard,
        "achievements.recent": _handle_achievements_recent,
    }
