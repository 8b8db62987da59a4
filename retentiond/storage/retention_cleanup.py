"""
Core cleanup logic for the retention system.

This module handles the batched deletion of expired rows and the
orchestration of one complete cleanup run.
"""

import asyncio
import logging
import math
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from .interfaces import RetentionStore, StoreConnection
from .retention_errors import ExhaustedRetriesError
from .retention_models import BatchProgress, RetentionConfig, RunResult
from .retention_policy import compute_cutoff, sanitize_identifier
from .retention_logging import format_progress, log_run_result
from .retention_retry import run_with_retry

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


async def delete_expired(
    connection: StoreConnection,
    table: str,
    column: str,
    cutoff: datetime,
    batch_size: int,
    max_retries: int,
    *,
    id_column: str = "id",
    batch_delay: float = 0.0,
    retry_base_delay: float = 1.0,
    sleep: Sleep = asyncio.sleep,
    expected_total: Optional[int] = None
) -> BatchProgress:
    """
    Delete every row older than ``cutoff`` in batches of ``batch_size``.

    Each batch selects ids oldest-first and deletes exactly those ids, so
    rows written while the batch runs are never affected. Select and delete
    form one retry unit: a failure in either repeats the whole batch, which
    is safe because deleting an already-deleted id affects zero rows.

    Args:
        connection: Store connection owned by the current run
        table: Sanitized table name
        column: Sanitized timestamp column name
        cutoff: Rows strictly before this instant are deleted
        batch_size: Maximum rows per batch
        max_retries: Attempts per batch before giving up
        id_column: Sanitized identifier column name
        batch_delay: Pause in seconds between full batches
        retry_base_delay: Base backoff delay in seconds
        sleep: Awaitable sleep used for both delays
        expected_total: Expired row count used for progress reporting

    Returns:
        BatchProgress with total rows deleted and batches executed

    Raises:
        ExhaustedRetriesError: If a batch fails on every attempt; its
            ``progress`` holds what earlier batches deleted
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be > 0, got {batch_size}")

    async def run_batch() -> Tuple[List[Any], int]:
        ids = await connection.select_expired_ids(table, column, cutoff, batch_size, id_column)
        if not ids:
            return ids, 0
        deleted = await connection.delete_by_ids(table, ids, id_column)
        return ids, deleted

    total_batches = math.ceil(expected_total / batch_size) if expected_total else None
    total_deleted = 0
    batch_number = 0

    while True:
        try:
            ids, deleted = await run_with_retry(run_batch, max_retries, retry_base_delay, sleep=sleep)
        except ExhaustedRetriesError as e:
            e.progress = BatchProgress(deleted=total_deleted, batches=batch_number)
            raise

        if not ids:
            break

        if deleted == 0:
            logger.warning(f"Batch selected {len(ids)} rows but deleted none, stopping")
            break

        batch_number += 1
        total_deleted += deleted

        if expected_total:
            logger.info(f"🔹 Batch {batch_number}/{total_batches} - deleted {deleted} rows "
                        f"({format_progress(total_deleted, expected_total)})")
        else:
            logger.info(f"🔹 Batch {batch_number} - deleted {deleted} rows")

        if deleted < batch_size:
            break

        if batch_delay > 0 and (expected_total is None or total_deleted < expected_total):
            await sleep(batch_delay)

    return BatchProgress(deleted=total_deleted, batches=batch_number)


class RetentionCleanup:
    """Runs complete cleanup cycles against a store."""

    def __init__(
        self,
        store: RetentionStore,
        config: RetentionConfig,
        sleep: Sleep = asyncio.sleep,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.config = config
        self.sleep = sleep
        self.clock = clock or datetime.now

    async def run(self) -> RunResult:
        """
        Execute one cleanup run.

        Never raises: every failure becomes a failed RunResult. The store
        connection, when acquired, is released exactly once.
        """
        config = self.config
        started_at = self.clock()
        start = time.monotonic()
        connection: Optional[StoreConnection] = None
        cutoff: Optional[datetime] = None
        expired = 0

        logger.info("🚀 Starting retention cleanup...")

        try:
            table = sanitize_identifier(config.table)
            column = sanitize_identifier(config.timestamp_column)
            id_column = sanitize_identifier(config.id_column)

            cutoff = compute_cutoff(started_at, config.retention_months)
            logger.info(f"📅 Cutoff date: {cutoff.date().isoformat()}")
            logger.info(f"🗂️ Keeping rows from the last {config.retention_months} months")

            connection = await self.store.acquire()
            logger.info("✅ Connected to store")

            expired = await connection.count_expired(table, column, cutoff)

            if expired == 0:
                result = RunResult(success=True, deleted=0, elapsed_seconds=0.0,
                                   started_at=started_at, cutoff=cutoff)
                log_run_result(result)
                return result

            logger.info(f"🧹 Found {expired} expired rows to clean up")

            progress = await delete_expired(
                connection, table, column, cutoff,
                config.batch_size, config.max_retries,
                id_column=id_column,
                batch_delay=config.batch_delay_seconds,
                retry_base_delay=config.retry_base_delay_seconds,
                sleep=self.sleep,
                expected_total=expired
            )

            result = RunResult(
                success=True,
                deleted=progress.deleted,
                elapsed_seconds=time.monotonic() - start,
                started_at=started_at,
                cutoff=cutoff,
                expired_found=expired,
                batches=progress.batches
            )
            log_run_result(result)
            return result

        except Exception as e:
            # Batches committed before the failure still count.
            progress = getattr(e, 'progress', None) or BatchProgress(deleted=0, batches=0)
            result = RunResult(
                success=False,
                deleted=progress.deleted,
                elapsed_seconds=time.monotonic() - start,
                started_at=started_at,
                cutoff=cutoff,
                expired_found=expired,
                batches=progress.batches,
                error=str(e)
            )
            log_run_result(result)
            return result

        finally:
            if connection is not None:
                try:
                    await connection.release()
                    logger.info("🔌 Store connection released")
                except Exception as e:
                    logger.error(f"⚠️ Failed to release store connection: {e}")


async def run_cleanup(
    store: RetentionStore,
    config: RetentionConfig,
    *,
    now: Optional[datetime] = None,
    sleep: Sleep = asyncio.sleep
) -> RunResult:
    """Run one cleanup against ``store``."""
    clock = (lambda: now) if now is not None else None
    return await RetentionCleanup(store, config, sleep=sleep, clock=clock).run()
