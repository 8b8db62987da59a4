"""
Data models for the retention system.

This module contains all the data classes and enums used by the retention system.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any


class SchedulerState(Enum):
    """Lifecycle states of the retention scheduler."""
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection settings for the backing store."""
    path: str = "data/retention.db"
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class RetentionConfig:
    """Configuration for retention operations."""
    table: str = ""
    timestamp_column: str = ""
    id_column: str = "id"
    retention_months: int = 3
    batch_size: int = 1000
    batch_delay_ms: int = 5000
    max_retries: int = 3
    retry_base_delay_ms: int = 1000
    schedule: str = "0 10 * * *"
    timezone: str = "America/Sao_Paulo"
    scheduler_enabled: bool = True
    health_check_delay_seconds: float = 5.0
    database: DatabaseSettings = field(default_factory=DatabaseSettings)

    @property
    def batch_delay_seconds(self) -> float:
        return self.batch_delay_ms / 1000.0

    @property
    def retry_base_delay_seconds(self) -> float:
        return self.retry_base_delay_ms / 1000.0


@dataclass(frozen=True)
class BatchProgress:
    """Outcome of a batched deletion loop."""
    deleted: int
    batches: int


@dataclass(frozen=True)
class RunResult:
    """Outcome of one cleanup run."""
    success: bool
    deleted: int
    elapsed_seconds: float
    started_at: datetime
    cutoff: Optional[datetime] = None
    expired_found: int = 0
    batches: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain dictionary for CLI output and logging."""
        return {
            'success': self.success,
            'deleted': self.deleted,
            'elapsed_seconds': round(self.elapsed_seconds, 3),
            'started_at': self.started_at.isoformat(),
            'cutoff': self.cutoff.isoformat() if self.cutoff else None,
            'expired_found': self.expired_found,
            'batches': self.batches,
            'error': self.error
        }


@dataclass(frozen=True)
class HealthSnapshot:
    """Point-in-time aggregate statistics of the retained table."""
    success: bool
    total_rows: int = 0
    expired_rows: int = 0
    oldest: Optional[Any] = None
    newest: Optional[Any] = None
    cutoff: Optional[datetime] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class SchedulerStats:
    """Snapshot of the scheduler's cumulative counters."""
    state: SchedulerState
    runs_attempted: int
    runs_succeeded: int
    runs_failed: int
    last_run: Optional[datetime]
    next_run: Optional[datetime]
    last_error: Optional[str]
    run_in_progress: bool

    @property
    def running(self) -> bool:
        return self.state is SchedulerState.RUNNING
