"""
SQLite implementation of the retention store.

Table and column names are interpolated only after sanitization; every
value (cutoff, limit, ids) is passed as a bound parameter.
"""

import logging
import sqlite3
from datetime import datetime, time
from pathlib import Path
from typing import Any, List, Sequence

from .interfaces import AggregateStats, RetentionStore, StoreConnection
from .retention_errors import QueryError, ReleaseError, StoreConnectionError
from .retention_models import DatabaseSettings
from .retention_policy import sanitize_identifier

logger = logging.getLogger(__name__)


def _bind_timestamp(value: datetime) -> str:
    """
    Render a cutoff for text comparison against stored timestamps.

    Cutoffs fall on midnight, so the bare date is bound: every text form of an
    earlier day ('T' or space separated, date only) sorts below it, and every
    form of the cutoff day sorts at or above it.
    """
    value = value.replace(tzinfo=None)
    if value.time() == time.min:
        return value.date().isoformat()
    return value.isoformat(sep=' ')


def _safe(name: str) -> str:
    cleaned = sanitize_identifier(name)
    if not cleaned:
        raise QueryError(f"Identifier {name!r} is empty after sanitization")
    return cleaned


class SQLiteConnection(StoreConnection):
    """A single sqlite3 connection used for one run."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn
        self._released = False

    def _execute(self, query: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        if self._released:
            raise QueryError("Connection already released", query)
        try:
            return self._conn.execute(query, tuple(params))
        except sqlite3.Error as e:
            raise QueryError(str(e), query) from e

    async def count_expired(self, table: str, column: str, cutoff: datetime) -> int:
        query = f"SELECT COUNT(*) FROM {_safe(table)} WHERE {_safe(column)} < ?"
        row = self._execute(query, (_bind_timestamp(cutoff),)).fetchone()
        return int(row[0]) if row else 0

    async def select_expired_ids(
        self,
        table: str,
        column: str,
        cutoff: datetime,
        limit: int,
        id_column: str = "id"
    ) -> List[Any]:
        query = f"""
            SELECT {_safe(id_column)} FROM {_safe(table)}
            WHERE {_safe(column)} < ?
            ORDER BY {_safe(column)} ASC
            LIMIT ?
        """
        rows = self._execute(query, (_bind_timestamp(cutoff), int(limit))).fetchall()
        return [row[0] for row in rows]

    async def delete_by_ids(
        self,
        table: str,
        ids: Sequence[Any],
        id_column: str = "id"
    ) -> int:
        if not ids:
            return 0

        placeholders = ','.join('?' for _ in ids)
        query = f"DELETE FROM {_safe(table)} WHERE {_safe(id_column)} IN ({placeholders})"
        cursor = self._execute(query, list(ids))
        try:
            self._conn.commit()
        except sqlite3.Error as e:
            raise QueryError(f"Commit failed: {e}", query) from e
        return max(cursor.rowcount, 0)

    async def aggregate_stats(self, table: str, column: str, cutoff: datetime) -> AggregateStats:
        col = _safe(column)
        query = f"""
            SELECT
                COUNT(*),
                COUNT(CASE WHEN {col} < ? THEN 1 END),
                MIN({col}),
                MAX({col})
            FROM {_safe(table)}
        """
        total, expired, oldest, newest = self._execute(query, (_bind_timestamp(cutoff),)).fetchone()
        return AggregateStats(
            total=int(total or 0),
            expired=int(expired or 0),
            min_timestamp=oldest,
            max_timestamp=newest
        )

    async def release(self) -> None:
        if self._released:
            return
        try:
            self._conn.close()
        except sqlite3.Error as e:
            raise ReleaseError(f"Failed to close connection: {e}") from e
        finally:
            self._released = True


class SQLiteStore(RetentionStore):
    """Opens a fresh sqlite3 connection per acquisition."""

    def __init__(self, settings: DatabaseSettings):
        self.db_path = Path(settings.path)
        self.timeout_seconds = settings.timeout_seconds

    async def acquire(self) -> SQLiteConnection:
        if not self.db_path.exists():
            raise StoreConnectionError(f"Database not found: {self.db_path}")
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=self.timeout_seconds)
        except sqlite3.Error as e:
            raise StoreConnectionError(f"Failed to connect to {self.db_path}: {e}") from e

        logger.debug(f"Connected to {self.db_path}")
        return SQLiteConnection(conn)


def create_sqlite_store(settings: DatabaseSettings) -> SQLiteStore:
    """Create a new SQLite store instance."""
    return SQLiteStore(settings)
