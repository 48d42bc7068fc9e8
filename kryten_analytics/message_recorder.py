"""Message recorder: appends chat messages to the analytics message log."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from .utils import to_epoch_ms
from .word_count_analyzer import count_words

if TYPE_CHECKING:
    from .database import AnalyticsDatabase
    from .utils import Clock


class MessageRecorder:
    """Stores each chat message with its word count.

    Messages from the bot, ignored users and system names like
    ``[server]`` are not recorded.
    """

    def __init__(
        self,
        database: AnalyticsDatabase,
        excluded_users: set[str],
        logger: logging.Logger | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._db = database
        self._excluded = {u.lower() for u in excluded_users}
        self._logger = logger or logging.getLogger("analytics.recorder")
        self._clock = clock
        self.messages_recorded = 0

    def should_record(self, username: str | None) -> bool:
        if not username:
            return False
        if username.startswith("[") and username.endswith("]"):
            return False
        return username.lower() not in self._excluded

    def _timestamp_ms(self, timestamp: datetime | int | float | None) -> int:
        if isinstance(timestamp, datetime):
            return to_epoch_ms(timestamp)
        if isinstance(timestamp, (int, float)) and timestamp > 0:
            return int(timestamp)
        if self._clock is not None:
            return self._clock.now_ms()
        return to_epoch_ms(datetime.now().astimezone())

    async def record(
        self,
        username: str,
        channel: str | None,
        message: str,
        timestamp: datetime | int | float | None = None,
    ) -> int | None:
        """Record one message. Returns the new message id, or None if skipped."""
        if not self.should_record(username):
            return None
        message_id = await self._db.record_message(
            username, channel, message or "", self._timestamp_ms(timestamp),
            count_words(message),
        )
        self.messages_recorded += 1
        self._logger.debug("Recorded message %d from %s", message_id, username)
        return message_id
