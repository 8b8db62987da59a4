"""
Prometheus metrics for the retention daemon.

Tracks run outcomes, deleted rows and table health so that cleanup
progress can be scraped alongside the rest of the system.
"""

import logging
from typing import Optional

from prometheus_client import (
    Counter, Histogram, Gauge,
    CollectorRegistry, generate_latest, start_http_server
)

from ..storage.retention_models import HealthSnapshot, RunResult


class RetentionMetrics:
    """
    Prometheus metrics for retention runs and table health.

    Metrics include:
    - Runs by outcome
    - Rows deleted and batches executed
    - Run duration
    - Table size and expired backlog from health checks
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize retention metrics.

        Args:
            registry: Optional Prometheus registry. If None, a private registry is created.
        """
        self.registry = registry or CollectorRegistry()
        self.logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

        self.runs_total = Counter(
            'retention_runs_total',
            'Total cleanup runs by outcome',
            ['status'],
            registry=self.registry
        )

        self.rows_deleted_total = Counter(
            'retention_rows_deleted_total',
            'Total rows deleted by cleanup runs',
            registry=self.registry
        )

        self.batches_total = Counter(
            'retention_batches_total',
            'Total delete batches executed',
            registry=self.registry
        )

        self.run_duration = Histogram(
            'retention_run_duration_seconds',
            'Cleanup run duration',
            buckets=[0.1, 1.0, 5.0, 30.0, 60.0, 300.0, 900.0, 3600.0],
            registry=self.registry
        )

        self.last_run_timestamp = Gauge(
            'retention_last_run_timestamp_seconds',
            'Unix time at which the last cleanup run started',
            registry=self.registry
        )

        self.table_rows = Gauge(
            'retention_table_rows',
            'Total rows in the retained table at the last health check',
            registry=self.registry
        )

        self.expired_rows = Gauge(
            'retention_expired_rows',
            'Rows older than the cutoff at the last health check',
            registry=self.registry
        )

    def record_run(self, result: RunResult):
        """Record the outcome of one cleanup run."""
        self.runs_total.labels(status='success' if result.success else 'failed').inc()
        self.rows_deleted_total.inc(result.deleted)
        self.batches_total.inc(result.batches)
        self.run_duration.observe(result.elapsed_seconds)
        self.last_run_timestamp.set(result.started_at.timestamp())

    def record_skipped(self):
        """Record a firing that was skipped because a run was in flight."""
        self.runs_total.labels(status='skipped').inc()

    def record_health(self, snapshot: HealthSnapshot):
        """Record a health snapshot. Failed snapshots leave gauges unchanged."""
        if not snapshot.success:
            return
        self.table_rows.set(snapshot.total_rows)
        self.expired_rows.set(snapshot.expired_rows)

    def export(self) -> bytes:
        """Render the registry in Prometheus text exposition format."""
        return generate_latest(self.registry)

    def serve(self, port: int, addr: str = '0.0.0.0'):
        """Expose the registry over HTTP on ``port``."""
        start_http_server(port, addr=addr, registry=self.registry)
        self.logger.info(f"Metrics endpoint listening on {addr}:{port}")
