"""
Retention Daemon - scheduled purge of expired rows from a relational table.

This package contains the cleanup engine (cutoff calculation, batched
deletion with retry), the scheduler that drives recurring and manual runs,
and the health/metrics reporting around it.
"""

__version__ = "0.1.0"
__author__ = "Taamir Ransome"
__email__ = "taamir@example.com"
