"""
Health monitoring for the retention system.

This module reports aggregate statistics of the retained table.
"""

import logging
from datetime import datetime
from typing import Optional

from .interfaces import RetentionStore, StoreConnection
from .retention_logging import log_health_snapshot
from .retention_models import HealthSnapshot, RetentionConfig
from .retention_policy import compute_cutoff, sanitize_identifier

logger = logging.getLogger(__name__)


async def check_health(
    store: RetentionStore,
    config: RetentionConfig,
    *,
    now: Optional[datetime] = None
) -> HealthSnapshot:
    """
    Query total, expired, oldest and newest timestamps of the table.

    Never raises: failures produce a snapshot with ``success=False``.
    """
    logger.info("🏥 Checking table health...")
    connection: Optional[StoreConnection] = None
    cutoff: Optional[datetime] = None

    try:
        table = sanitize_identifier(config.table)
        column = sanitize_identifier(config.timestamp_column)
        cutoff = compute_cutoff(now or datetime.now(), config.retention_months)

        connection = await store.acquire()
        stats = await connection.aggregate_stats(table, column, cutoff)

        snapshot = HealthSnapshot(
            success=True,
            total_rows=stats.total,
            expired_rows=stats.expired,
            oldest=stats.min_timestamp,
            newest=stats.max_timestamp,
            cutoff=cutoff
        )

    except Exception as e:
        snapshot = HealthSnapshot(success=False, cutoff=cutoff, error=str(e))

    finally:
        if connection is not None:
            try:
                await connection.release()
            except Exception as e:
                logger.error(f"⚠️ Failed to release store connection: {e}")

    log_health_snapshot(config.table, config.retention_months, snapshot)
    return snapshot
