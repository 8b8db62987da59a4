"""
Monitoring module for the retention daemon.

This module provides Prometheus metrics for cleanup runs and table health.
"""

from .retention_metrics import RetentionMetrics

__all__ = [
    'RetentionMetrics'
]
