"""Configuration system for kryten-analytics.

All Pydantic models are defined here with sensible defaults. The top-level
model extends KrytenConfig so NATS, channel and metrics settings share the
kryten-py schema.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from kryten import KrytenConfig
from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════
#  Core
# ═══════════════════════════════════════════════════════════════

class DatabaseConfig(BaseModel):
    path: str = "analytics.db"


class BotConfig(BaseModel):
    username: str = "AnalyticsBot"


# ═══════════════════════════════════════════════════════════════
#  Scheduling & Batching
# ═══════════════════════════════════════════════════════════════

class SchedulerConfig(BaseModel):
    interval_hours: float = Field(default=4.0, gt=0)
    run_on_startup: bool = Field(
        default=False,
        description="Run every analyzer once, in order, before the scheduler starts; "
        "the scheduler then waits a full interval before the next run",
    )
    shutdown_timeout_seconds: float = 300.0
    shutdown_poll_seconds: float = 1.0


class BatchConfig(BaseModel):
    page_delay_seconds: float = Field(default=0.1, ge=0)


class WordCountConfig(BaseModel):
    batch_size: int = Field(default=1000, gt=0)
    progress_every: int = 10000


class DailyActivityConfig(BaseModel):
    retention_days: int = Field(default=90, gt=0)
    batch_size: int = Field(default=5000, gt=0)


class ContentAnalysisConfig(BaseModel):
    vocabulary_limit: int = Field(default=1000, ge=0)
    caps_ratio: float = 0.8
    caps_min_letters: int = 5


# ═══════════════════════════════════════════════════════════════
#  Achievements
# ═══════════════════════════════════════════════════════════════

class AchievementDefinitionConfig(BaseModel):
    """One tiered achievement. Thresholds ascend bronze → diamond."""
    type: str
    name: str
    description: str = ""
    bronze_threshold: int | None = None
    silver_threshold: int | None = None
    gold_threshold: int | None = None
    diamond_threshold: int | None = None
    icon: str = ""
    category: str = "chat"


def _default_definitions() -> list[AchievementDefinitionConfig]:
    rows = [
        ("message_count", "Chatterbox", "Send messages in chat", 100, 1000, 10000, 50000, "💬"),
        ("word_count", "Wordsmith", "Type words in chat", 1000, 10000, 100000, 1000000, "📝"),
        ("streak_days", "Dedicated", "Chat consecutive days", 7, 30, 100, 365, "🔥"),
        ("active_days", "Regular", "Total days active", 10, 50, 200, 500, "📅"),
        ("night_owl", "Night Owl", "Messages sent 12AM-6AM", 50, 250, 1000, 5000, "🦉"),
        ("early_bird", "Early Bird", "Messages sent 6AM-12PM", 50, 250, 1000, 5000, "🐦"),
        ("emoji_user", "Emoji Master", "Use emojis in messages", 100, 500, 2000, 10000, "😄"),
        ("caps_lock", "LOUD TALKER", "MESSAGES IN ALL CAPS", 20, 100, 500, 2000, "📢"),
        ("question_asker", "Curious Mind", "Ask questions", 50, 250, 1000, 5000, "❓"),
        ("link_sharer", "Link Master", "Share URLs", 25, 100, 500, 2000, "🔗"),
        ("vocabulary", "Vocabulary King", "Unique words used", 500, 2000, 5000, 10000, "📚"),
        ("longest_msg", "Essay Writer", "Longest single message", 100, 250, 500, 1000, "📜"),
    ]
    return [
        AchievementDefinitionConfig(
            type=t, name=n, description=d,
            bronze_threshold=b, silver_threshold=s, gold_threshold=g, diamond_threshold=dm,
            icon=icon,
        )
        for t, n, d, b, s, g, dm, icon in rows
    ]


class AchievementsConfig(BaseModel):
    definitions: list[AchievementDefinitionConfig] = Field(default_factory=_default_definitions)


# NOTE: metrics (port, health_path, metrics_path) is inherited from
# KrytenConfig (kryten.config.MetricsConfig).


# ═══════════════════════════════════════════════════════════════
#  Top-Level Analytics Config
# ═══════════════════════════════════════════════════════════════

class AnalyticsConfig(KrytenConfig):
    """Full analytics config. Extends KrytenConfig with analytics sub-models."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    bot: BotConfig = Field(default_factory=BotConfig)
    ignored_users: list[str] = Field(default_factory=list)
    timezone_offset_hours: int = Field(default=0, ge=-12, le=14)

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    word_count: WordCountConfig = Field(default_factory=WordCountConfig)
    daily_activity: DailyActivityConfig = Field(default_factory=DailyActivityConfig)
    content_analysis: ContentAnalysisConfig = Field(default_factory=ContentAnalysisConfig)
    achievements: AchievementsConfig = Field(default_factory=AchievementsConfig)

    @property
    def excluded_users(self) -> set[str]:
        """Lower-cased names whose messages never count (bot + ignored)."""
        return {self.bot.username.lower()} | {u.lower() for u in self.ignored_users}


# ═══════════════════════════════════════════════════════════════
#  Config Loading
# ═══════════════════════════════════════════════════════════════

def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in string values."""
    if isinstance(obj, str):
        return re.sub(
            r"\$\{([^}:]+)(?::-(.*?))?\}",
            lambda m: os.environ.get(m.group(1), m.group(2) or ""),
            obj,
        )
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def load_config(config_path: str) -> AnalyticsConfig:
    """Load and validate YAML config file into AnalyticsConfig."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError("Config file must contain a YAML mapping at the top level.")

    raw = _expand_env_vars(raw)
    return AnalyticsConfig(**raw)
