"""BatchJob: shared execution wrapper for analytics jobs.

Subclasses implement ``execute()`` and return the number of records they
processed. ``process_batch`` pages through a query with one transaction per
page so a crash loses at most the page in flight.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Sequence

from .errors import TransactionError
from .utils import Clock

if TYPE_CHECKING:
    from .database import AnalyticsDatabase, Transaction

RowProcessor = Callable[[dict, "Transaction"], Awaitable[Any]]


@dataclass(frozen=True)
class JobResult:
    records_processed: int
    duration_ms: int


class BatchJob:
    """Base class for batch analytics jobs."""

    name: str = "BatchJob"

    def __init__(
        self,
        database: AnalyticsDatabase,
        logger: logging.Logger | None = None,
        clock: Clock | None = None,
        page_delay_seconds: float = 0.1,
    ) -> None:
        self._db = database
        self._logger = logger or logging.getLogger(f"analytics.jobs.{self.name}")
        self._clock = clock or Clock()
        self._page_delay = page_delay_seconds

    async def execute(self) -> int:
        raise NotImplementedError(f"{type(self).__name__}.execute() must be implemented by subclass")

    async def run(self) -> JobResult:
        """Run ``execute()`` with timing and logging. Failures are re-raised."""
        start = time.monotonic()
        self._logger.info("[%s] Starting batch job", self.name)
        try:
            records = await self.execute()
        except Exception:
            duration = int((time.monotonic() - start) * 1000)
            self._logger.exception("[%s] Failed after %dms", self.name, duration)
            raise
        duration = int((time.monotonic() - start) * 1000)
        self._logger.info("[%s] Completed: %d records in %dms", self.name, records, duration)
        return JobResult(records_processed=records, duration_ms=duration)

    async def process_batch(
        self,
        query: str,
        params: Sequence[Any],
        batch_size: int,
        processor: RowProcessor,
    ) -> int:
        """Page through ``query LIMIT batch_size OFFSET n``, one transaction per page.

        A failing row rolls its whole page back and raises TransactionError.
        Stops after the first page shorter than *batch_size*.
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        offset = 0
        total = 0
        while True:
            page = await self._db.all(f"{query} LIMIT ? OFFSET ?", [*params, batch_size, offset])
            if not page:
                break

            try:
                async with self._db.transaction() as tx:
                    for row in page:
                        await processor(row, tx)
            except TransactionError:
                raise
            except Exception as e:
                raise TransactionError(
                    f"[{self.name}] Page at offset {offset} rolled back: {e}", e,
                ) from e

            total += len(page)
            self._logger.debug("[%s] Processed batch: %d items", self.name, len(page))

            if len(page) < batch_size:
                break
            offset += batch_size
            if self._page_delay:
                await asyncio.sleep(self._page_delay)

        return total

    async def update_cache(self, tx: Transaction, table: str, key: str, data: dict) -> None:
        """Upsert *data* into a cache table keyed by *key*, stamping updated_at."""
        columns = list(data)
        placeholders = ", ".join("?" for _ in columns)
        updates = ", ".join(f"{c} = excluded.{c}" for c in columns if c != key)
        await tx.run(
            f"INSERT INTO {table} ({', '.join(columns)}, updated_at) "
            f"VALUES ({placeholders}, CURRENT_TIMESTAMP) "
            f"ON CONFLICT({key}) DO UPDATE SET {updates}, updated_at = CURRENT_TIMESTAMP",
            [data[c] for c in columns],
        )
