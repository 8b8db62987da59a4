"""
Unit tests for cutoff calculation and identifier sanitization.
"""

import re
import unittest
from datetime import datetime, timezone

import pytest

from retentiond.storage.retention_policy import compute_cutoff, sanitize_identifier


class TestComputeCutoff(unittest.TestCase):
    """Test cutoff date calculation."""

    def test_three_months_back(self):
        """Test the documented daily case."""
        cutoff = compute_cutoff(datetime(2024, 6, 15, 13, 45, 12), 3)
        self.assertEqual(cutoff, datetime(2024, 3, 1, 0, 0, 0))

    def test_day_missing_in_target_month(self):
        """Test that March 31 minus one month is February 1."""
        self.assertEqual(compute_cutoff(datetime(2024, 3, 31, 23, 59), 1), datetime(2024, 2, 1))
        self.assertEqual(compute_cutoff(datetime(2023, 5, 31), 3), datetime(2023, 2, 1))

    def test_crosses_year_boundary(self):
        """Test subtraction across January."""
        self.assertEqual(compute_cutoff(datetime(2024, 1, 10), 1), datetime(2023, 12, 1))
        self.assertEqual(compute_cutoff(datetime(2024, 2, 29), 26), datetime(2021, 12, 1))

    def test_zero_months_is_start_of_current_month(self):
        self.assertEqual(compute_cutoff(datetime(2024, 6, 15, 8), 0), datetime(2024, 6, 1))

    def test_timezone_is_preserved(self):
        now = datetime(2024, 6, 15, 12, tzinfo=timezone.utc)
        cutoff = compute_cutoff(now, 3)
        self.assertEqual(cutoff.tzinfo, timezone.utc)
        self.assertEqual(cutoff, datetime(2024, 3, 1, tzinfo=timezone.utc))

    def test_negative_months_rejected(self):
        with self.assertRaises(ValueError):
            compute_cutoff(datetime(2024, 6, 15), -1)

    def test_deterministic(self):
        now = datetime(2024, 8, 31, 17, 30)
        self.assertEqual(compute_cutoff(now, 6), compute_cutoff(now, 6))


@pytest.mark.parametrize("now", [
    datetime(2024, 1, 1),
    datetime(2024, 3, 31, 23, 59, 59),
    datetime(2023, 12, 31, 12),
    datetime(2024, 2, 29, 6),
])
def test_cutoff_is_first_instant_and_non_increasing(now):
    """Every cutoff is a month start and later windows never move it forward."""
    previous = None
    for months_back in range(0, 40):
        cutoff = compute_cutoff(now, months_back)
        assert (cutoff.day, cutoff.hour, cutoff.minute, cutoff.second, cutoff.microsecond) == (1, 0, 0, 0, 0)
        if previous is not None:
            assert cutoff < previous
        previous = cutoff


class TestSanitizeIdentifier(unittest.TestCase):
    """Test identifier sanitization."""

    def test_keeps_safe_characters(self):
        self.assertEqual(sanitize_identifier("Monitoring_2024"), "Monitoring_2024")

    def test_strips_unsafe_characters(self):
        self.assertEqual(sanitize_identifier("users; DROP TABLE users;--"), "usersDROPTABLEusers")
        self.assertEqual(sanitize_identifier("dbo.[events]"), "dboevents")
        self.assertEqual(sanitize_identifier("created-at "), "createdat")

    def test_strips_non_ascii(self):
        self.assertEqual(sanitize_identifier("dataçãoé"), "data")

    def test_empty_input(self):
        self.assertEqual(sanitize_identifier(""), "")
        self.assertEqual(sanitize_identifier("!!!"), "")


@pytest.mark.parametrize("name", [
    "plain", "with space", "a'b\"c", "semi;colon", "ünïcödé_1", "`tick`", "x" * 200
])
def test_sanitize_idempotent_and_safe(name):
    once = sanitize_identifier(name)
    assert sanitize_identifier(once) == once
    assert re.fullmatch(r'[A-Za-z0-9_]*', once)
