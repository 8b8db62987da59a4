"""
Cutoff and identifier helpers for the retention system.
"""

import re
from datetime import datetime

_UNSAFE_IDENTIFIER_CHARS = re.compile(r'[^A-Za-z0-9_]')


def compute_cutoff(now: datetime, months_back: int) -> datetime:
    """
    Compute the retention boundary.

    Subtracts ``months_back`` calendar months from ``now`` and clamps the
    result to the first day of that month at midnight, so the day-of-month
    of ``now`` never has to exist in the target month. Rows strictly older
    than the returned instant are expired.

    Args:
        now: Reference instant (naive or aware, tzinfo is preserved)
        months_back: Number of whole months to retain

    Returns:
        First instant of the target month
    """
    if months_back < 0:
        raise ValueError(f"months_back must be >= 0, got {months_back}")

    month_index = now.year * 12 + (now.month - 1) - months_back
    year, month = divmod(month_index, 12)

    return now.replace(year=year, month=month + 1, day=1,
                       hour=0, minute=0, second=0, microsecond=0)


def sanitize_identifier(name: str) -> str:
    """Strip every character that is not an ASCII letter, digit or underscore."""
    return _UNSAFE_IDENTIFIER_CHARS.sub('', name or '')
