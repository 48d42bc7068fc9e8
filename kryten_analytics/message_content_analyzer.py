"""Message content analyzer: per-user text features and vocabulary."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from .batch_job import BatchJob

EMOJI_PATTERN = re.compile(
    "[\U0001F600-\U0001F64F\U0001F300-\U0001F5FF\U0001F680-\U0001F6FF"
    "\U0001F1E0-\U0001F1FF\u2600-\u26FF\u2700-\u27BF"
    "\U0001F900-\U0001F9FF\U0001FA00-\U0001FA6F\U0001FA70-\U0001FAFF]"
)
URL_PATTERN = re.compile(r"https?://\S+|www\.\S+")
MENTION_PATTERN = re.compile(r"@[a-zA-Z0-9_-]+")
WORD_PATTERN = re.compile(r"\b[\w']+\b")
LETTER_PATTERN = re.compile(r"[a-zA-Z]")
UPPER_PATTERN = re.compile(r"[A-Z]")


@dataclass(frozen=True)
class MessageFeatures:
    emojis: int
    urls: int
    mentions: int
    words: list[str]
    is_caps: bool
    questions: int
    exclamations: int


def analyze_message(message: str, caps_ratio: float = 0.8, caps_min_letters: int = 5) -> MessageFeatures:
    """Extract text features from one chat message.

    A message is shouting when it has more than *caps_min_letters* ASCII
    letters and more than *caps_ratio* of them are uppercase.
    """
    letters = len(LETTER_PATTERN.findall(message))
    upper = len(UPPER_PATTERN.findall(message))
    return MessageFeatures(
        emojis=len(EMOJI_PATTERN.findall(message)),
        urls=len(URL_PATTERN.findall(message)),
        mentions=len(MENTION_PATTERN.findall(message)),
        words=WORD_PATTERN.findall(message),
        is_caps=letters > caps_min_letters and upper / letters > caps_ratio,
        questions=message.count("?"),
        exclamations=message.count("!"),
    )


@dataclass
class ContentStats:
    """Running per-user totals. Vocabulary keeps first-seen order."""

    total_messages: int = 0
    total_words: int = 0
    total_length: int = 0
    emoji_count: int = 0
    caps_count: int = 0
    question_count: int = 0
    exclamation_count: int = 0
    url_count: int = 0
    mention_count: int = 0
    longest_message: int = 0
    shortest_message: int | None = None
    vocabulary: dict[str, None] = field(default_factory=dict)

    def add(self, message: str, word_count: int | None, features: MessageFeatures) -> None:
        length = len(message)
        self.total_words += word_count or 0
        self.total_length += length
        self.emoji_count += features.emojis
        self.caps_count += 1 if features.is_caps else 0
        self.question_count += features.questions
        self.exclamation_count += features.exclamations
        self.url_count += features.urls
        self.mention_count += features.mentions
        self.longest_message = max(self.longest_message, length)
        if self.shortest_message is None or length < self.shortest_message:
            self.shortest_message = length
        for word in features.words:
            self.vocabulary.setdefault(word.lower(), None)

    def to_row(self, username: str) -> dict:
        n = self.total_messages or 1
        return {
            "username": username,
            "total_messages": self.total_messages,
            "total_words": self.total_words,
            "avg_message_length": round(self.total_length / n),
            "avg_words_per_message": round(self.total_words / n, 1),
            "emoji_count": self.emoji_count,
            "emoji_usage_rate": round(self.emoji_count / n * 100, 1),
            "caps_count": self.caps_count,
            "caps_usage_rate": round(self.caps_count / n * 100, 1),
            "question_count": self.question_count,
            "exclamation_count": self.exclamation_count,
            "url_count": self.url_count,
            "mention_count": self.mention_count,
            "longest_message": self.longest_message,
            "shortest_message": self.shortest_message or 0,
            "vocabulary_size": len(self.vocabulary),
        }


class MessageContentAnalyzer(BatchJob):
    """Full per-user recompute of ``message_analysis_cache`` and ``user_vocabulary``."""

    name = "MessageContentAnalyzer"

    def __init__(self, database, logger=None, clock=None, page_delay_seconds=0.1,
                 excluded_users: set[str] | None = None, vocabulary_limit: int = 1000,
                 caps_ratio: float = 0.8, caps_min_letters: int = 5) -> None:
        super().__init__(database, logger, clock, page_delay_seconds)
        self.excluded_users = sorted(u.lower() for u in (excluded_users or ()))
        self.vocabulary_limit = vocabulary_limit
        self.caps_ratio = caps_ratio
        self.caps_min_letters = caps_min_letters

    async def execute(self) -> int:
        params: list = []
        excluded_sql = ""
        if self.excluded_users:
            excluded_sql = "AND LOWER(username) NOT IN ({})".format(
                ", ".join("?" for _ in self.excluded_users)
            )
            params.extend(self.excluded_users)

        users = await self._db.all(
            f"""
            SELECT DISTINCT LOWER(username) AS username
            FROM messages
            WHERE username NOT LIKE '[%]'
                {excluded_sql}
            ORDER BY username
            """,
            params,
        )
        self._logger.info("[%s] Analyzing content for %d users", self.name, len(users))

        processed = 0
        for user in users:
            await self.analyze_user_messages(user["username"])
            processed += 1
            if processed % 50 == 0:
                self._logger.debug("[%s] Processed %d/%d users", self.name, processed, len(users))
        return processed

    async def analyze_user_messages(self, username: str) -> ContentStats | None:
        messages = await self._db.all(
            "SELECT message, word_count FROM messages WHERE LOWER(username) = ? ORDER BY id",
            (username,),
        )
        if not messages:
            return None

        stats = ContentStats(total_messages=len(messages))
        for msg in messages:
            text = msg["message"]
            if not text:
                continue
            stats.add(text, msg["word_count"],
                      analyze_message(text, self.caps_ratio, self.caps_min_letters))

        sample = list(stats.vocabulary)[: self.vocabulary_limit]
        async with self._db.transaction() as tx:
            await self.update_cache(tx, "message_analysis_cache", "username", stats.to_row(username))
            await tx.run("DELETE FROM user_vocabulary WHERE username = ?", (username,))
            await tx.run_many(
                "INSERT OR IGNORE INTO user_vocabulary (username, word) VALUES (?, ?)",
                [(username, word) for word in sample],
            )
        return stats

    # ══════════════════════════════════════════════════════════
    #  Queries
    # ══════════════════════════════════════════════════════════

    async def get_content_stats(self, username: str) -> dict | None:
        return await self._db.get(
            "SELECT * FROM message_analysis_cache WHERE username = ?", (username.lower(),),
        )

    async def get_top_emoji_users(self, limit: int = 10) -> list[dict]:
        return await self._db.all(
            "SELECT username, emoji_count, emoji_usage_rate, total_messages "
            "FROM message_analysis_cache WHERE emoji_count > 0 "
            "ORDER BY emoji_usage_rate DESC LIMIT ?",
            (limit,),
        )

    async def get_caps_users(self, limit: int = 10) -> list[dict]:
        return await self._db.all(
            "SELECT username, caps_count, caps_usage_rate, total_messages "
            "FROM message_analysis_cache WHERE caps_count > 10 "
            "ORDER BY caps_usage_rate DESC LIMIT ?",
            (limit,),
        )

    async def get_vocabulary_leaders(self, limit: int = 10) -> list[dict]:
        return await self._db.all(
            """
            SELECT username, vocabulary_size, total_words,
                   ROUND(CAST(vocabulary_size AS REAL) / total_words * 100, 2) AS uniqueness_score
            FROM message_analysis_cache
            WHERE total_words > 100
            ORDER BY vocabulary_size DESC
            LIMIT ?
            """,
            (limit,),
        )

    async def get_question_askers(self, limit: int = 10) -> list[dict]:
        return await self._db.all(
            """
            SELECT username, question_count, total_messages,
                   ROUND(CAST(question_count AS REAL) / total_messages * 100, 2) AS question_rate
            FROM message_analysis_cache
            WHERE question_count > 0
            ORDER BY question_count DESC
            LIMIT ?
            """,
            (limit,),
        )
