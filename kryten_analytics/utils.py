"""Shared utility helpers for kryten-analytics."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone


class Clock:
    """Wall-clock and timer source used by the scheduler and jobs."""

    def now(self) -> datetime:
        return now_utc()

    def now_ms(self) -> int:
        return to_epoch_ms(self.now())

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(seconds, 0))


def now_utc() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def to_epoch_ms(dt: datetime) -> int:
    """Convert a datetime to integer epoch milliseconds (naive means UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def local_date(dt: datetime, offset_hours: float = 0) -> date:
    """Calendar date of *dt* shifted by a fixed UTC offset."""
    return (dt + timedelta(hours=offset_hours)).date()


def today_str(offset_hours: float = 0, now: datetime | None = None) -> str:
    """Return today's date as YYYY-MM-DD, shifted by *offset_hours* from UTC."""
    return local_date(now or now_utc(), offset_hours).isoformat()


def days_between(later: str | date, earlier: str | date) -> int:
    """Whole days from *earlier* to *later* (YYYY-MM-DD strings or dates)."""
    if isinstance(later, str):
        later = date.fromisoformat(later)
    if isinstance(earlier, str):
        earlier = date.fromisoformat(earlier)
    return (later - earlier).days


def sqlite_hours_modifier(offset_hours: float) -> str:
    """Format an hour offset as a SQLite datetime modifier, e.g. '+10 hours'."""
    sign = "+" if offset_hours >= 0 else "-"
    value = abs(offset_hours)
    text = str(int(value)) if float(value).is_integer() else str(value)
    return f"{sign}{text} hours"
