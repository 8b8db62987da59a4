"""
Error types for the retention system.

Every failure the cleanup engine can observe maps onto one of these classes,
so callers can branch on the kind of failure instead of parsing messages.
"""

from typing import List, Optional, Sequence


class RetentionError(Exception):
    """Base class for all retention errors."""


class ConfigurationError(RetentionError):
    """Missing or invalid settings. Fatal to startup, never retried."""

    def __init__(self, message: str, missing: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.missing: List[str] = list(missing or [])

    @classmethod
    def for_missing(cls, missing: Sequence[str]) -> "ConfigurationError":
        return cls(f"Missing required settings: {', '.join(missing)}", missing)


class StoreConnectionError(RetentionError):
    """The store could not be reached."""


class QueryError(RetentionError):
    """A query was malformed or rejected by the store."""

    def __init__(self, message: str, query: Optional[str] = None):
        super().__init__(message)
        self.query = query


class ReleaseError(RetentionError):
    """A connection could not be released."""


class ExhaustedRetriesError(RetentionError):
    """An operation kept failing after every allowed attempt."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Operation failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error
        # Set by the batch loop to what earlier batches already committed.
        self.progress = None
