"""
Store interfaces for the retention system.

This module provides abstract interfaces for the database operations the
cleanup engine depends on. Identifiers passed in are already sanitized;
values are always bound as parameters by implementations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence


@dataclass
class AggregateStats:
    """Aggregate statistics returned by a single health query."""
    total: int
    expired: int
    min_timestamp: Optional[Any]
    max_timestamp: Optional[Any]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'total': self.total,
            'expired': self.expired,
            'min_timestamp': self.min_timestamp,
            'max_timestamp': self.max_timestamp
        }


class StoreConnection(ABC):
    """A connection held for the duration of one run or health check."""

    @abstractmethod
    async def count_expired(self, table: str, column: str, cutoff: datetime) -> int:
        """Count rows whose timestamp column is strictly before ``cutoff``."""
        pass

    @abstractmethod
    async def select_expired_ids(
        self,
        table: str,
        column: str,
        cutoff: datetime,
        limit: int,
        id_column: str = "id"
    ) -> List[Any]:
        """Select up to ``limit`` expired row ids, oldest first."""
        pass

    @abstractmethod
    async def delete_by_ids(
        self,
        table: str,
        ids: Sequence[Any],
        id_column: str = "id"
    ) -> int:
        """Delete rows with the given ids and return the affected row count."""
        pass

    @abstractmethod
    async def aggregate_stats(self, table: str, column: str, cutoff: datetime) -> AggregateStats:
        """Return total, expired, min and max timestamp in one query."""
        pass

    @abstractmethod
    async def release(self) -> None:
        """Release the connection back to the store."""
        pass


class RetentionStore(ABC):
    """Abstract interface for the store the retention engine purges."""

    @abstractmethod
    async def acquire(self) -> StoreConnection:
        """Acquire a connection. Raises StoreConnectionError on failure."""
        pass
