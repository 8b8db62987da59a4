"""
Logging and reporting for the retention system.

This module configures log output and renders run and health summaries.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from .retention_models import HealthSnapshot, RunResult

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DEFAULT_LOG_FILE = 'logs/retention/cleanup.log'


def setup_logging(verbose: bool = False, log_file: Optional[str] = DEFAULT_LOG_FILE):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


def format_duration(duration_seconds: float) -> str:
    """Format duration in a human-readable format."""
    if duration_seconds < 60:
        return f"{duration_seconds:.2f}s"
    elif duration_seconds < 3600:
        minutes = duration_seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = duration_seconds / 3600
        return f"{hours:.1f}h"


def format_progress(deleted: int, expected_total: int) -> str:
    """Percentage of expected rows deleted so far."""
    if expected_total <= 0:
        return "100.0%"
    return f"{min(deleted / expected_total, 1.0) * 100:.1f}%"


def log_run_result(result: RunResult):
    """Log the summary lines of a finished run."""
    if not result.success:
        logger.error(f"❌ Cleanup failed after {format_duration(result.elapsed_seconds)}: {result.error}")
        if result.deleted:
            logger.warning(f"⚠️ {result.deleted} rows were deleted in {result.batches} batches before the failure")
        return

    if result.deleted == 0 and result.batches == 0:
        logger.info("✅ No expired rows found, table is clean")
        return

    logger.info("🎉 Cleanup completed successfully")
    logger.info(f"📊 Rows deleted: {result.deleted} in {result.batches} batches")
    logger.info(f"⏱️ Duration: {format_duration(result.elapsed_seconds)}")


def log_health_snapshot(table: str, retention_months: int, snapshot: HealthSnapshot):
    """Log a health snapshot."""
    if not snapshot.success:
        logger.error(f"❌ Health check failed: {snapshot.error}")
        return

    logger.info(f"📊 Statistics for table {table}:")
    logger.info(f"   • Total rows: {snapshot.total_rows}")
    logger.info(f"   • Expired rows (>{retention_months} months): {snapshot.expired_rows}")
    logger.info(f"   • Oldest timestamp: {snapshot.oldest}")
    logger.info(f"   • Newest timestamp: {snapshot.newest}")
