"""
Unit tests for batched deletion and cleanup runs.

Tests batch sizing, ordering, retry of failed batches, and the
acquire/release discipline of a complete run.
"""

from datetime import datetime, timedelta

import pytest

from retentiond.storage.retention_cleanup import RetentionCleanup, delete_expired, run_cleanup
from retentiond.storage.retention_errors import ExhaustedRetriesError
from retentiond.storage.retention_models import RetentionConfig

from fakes import InMemoryConnection, InMemoryStore, RecordingSleep, rows_before

NOW = datetime(2024, 6, 15, 10, 0, 0)
CUTOFF = datetime(2024, 3, 1)


def make_config(**overrides) -> RetentionConfig:
    values = dict(
        table='monitoring',
        timestamp_column='created_at',
        retention_months=3,
        batch_size=1000,
        batch_delay_ms=5000,
        max_retries=3,
        retry_base_delay_ms=1000
    )
    values.update(overrides)
    return RetentionConfig(**values)


def recent_rows(count: int, start_id: int) -> dict:
    return {start_id + i: NOW - timedelta(days=i) for i in range(count)}


class TestDeleteExpired:
    """Test cases for delete_expired."""

    async def _delete(self, store, batch_size=1000, max_retries=3, **kwargs):
        connection = await store.acquire()
        return await delete_expired(connection, 'monitoring', 'created_at', CUTOFF,
                                    batch_size, max_retries, **kwargs)

    @pytest.mark.asyncio
    async def test_batches_of_documented_sizes(self):
        store = InMemoryStore(rows_before(CUTOFF, 2500))
        sleep = RecordingSleep()

        progress = await self._delete(store, batch_size=1000, batch_delay=5.0,
                                      sleep=sleep, expected_total=2500)

        assert progress.deleted == 2500
        assert progress.batches == 3
        assert store.deleted_batches == [1000, 1000, 500]
        assert sleep.delays == [5.0, 5.0]
        assert store.rows == {}

    @pytest.mark.parametrize("total,batch_size", [(1, 1), (999, 1000), (2000, 1000), (2001, 1000), (7, 3)])
    @pytest.mark.asyncio
    async def test_batch_count_is_ceiling(self, total, batch_size):
        store = InMemoryStore(rows_before(CUTOFF, total))

        progress = await self._delete(store, batch_size=batch_size, sleep=RecordingSleep())

        assert progress.deleted == total
        assert len(store.deleted_batches) == -(-total // batch_size)

    @pytest.mark.asyncio
    async def test_second_invocation_deletes_nothing(self):
        store = InMemoryStore(rows_before(CUTOFF, 1500))

        first = await self._delete(store, sleep=RecordingSleep())
        second = await self._delete(store, sleep=RecordingSleep())

        assert first.deleted == 1500
        assert second.deleted == 0
        assert second.batches == 0

    @pytest.mark.asyncio
    async def test_only_rows_before_cutoff_are_deleted(self):
        rows = rows_before(CUTOFF, 10)
        rows.update(recent_rows(5, start_id=100))
        rows[200] = CUTOFF  # exactly at the cutoff is kept
        store = InMemoryStore(rows)

        progress = await self._delete(store, sleep=RecordingSleep())

        assert progress.deleted == 10
        assert sorted(store.rows) == [100, 101, 102, 103, 104, 200]

    @pytest.mark.asyncio
    async def test_oldest_rows_are_deleted_first(self):
        rows = {
            1: CUTOFF - timedelta(days=1),
            2: CUTOFF - timedelta(days=300),
            3: CUTOFF - timedelta(days=50),
            4: CUTOFF - timedelta(days=200),
        }
        store = InMemoryStore(rows)

        await self._delete(store, batch_size=2, sleep=RecordingSleep())

        assert store.deleted_ids == [[2, 4], [3, 1]]

    @pytest.mark.asyncio
    async def test_transient_failures_retry_whole_batch(self):
        store = InMemoryStore(rows_before(CUTOFF, 1200))
        store.failures = {'select': 1, 'delete': 1}
        sleep = RecordingSleep()

        progress = await self._delete(store, retry_base_delay=1.0, batch_delay=0.0, sleep=sleep)

        assert progress.deleted == 1200
        assert store.deleted_batches == [1000, 200]
        # select fails, then select ok + delete fails, then the batch succeeds
        assert store.calls[:5] == ['select', 'select', 'delete', 'select', 'delete']
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_propagate(self):
        store = InMemoryStore(rows_before(CUTOFF, 10))
        store.failures = {'delete': 10}

        with pytest.raises(ExhaustedRetriesError) as exc_info:
            await self._delete(store, max_retries=3, sleep=RecordingSleep())

        assert exc_info.value.attempts == 3
        assert store.calls.count('delete') == 3
        assert len(store.rows) == 10
        assert exc_info.value.progress.deleted == 0
        assert exc_info.value.progress.batches == 0

    @pytest.mark.asyncio
    async def test_exhausted_retries_carry_committed_progress(self):
        store = InMemoryStore(rows_before(CUTOFF, 2500))
        store.delete_budget = 2

        with pytest.raises(ExhaustedRetriesError) as exc_info:
            await self._delete(store, batch_size=1000, max_retries=3, sleep=RecordingSleep())

        assert exc_info.value.progress.deleted == 2000
        assert exc_info.value.progress.batches == 2
        assert len(store.rows) == 500

    @pytest.mark.asyncio
    async def test_stops_when_selection_and_deletion_disagree(self):
        store = InMemoryStore(rows_before(CUTOFF, 50))
        store.ignore_deletes = True

        progress = await self._delete(store, batch_size=10, sleep=RecordingSleep())

        assert progress.deleted == 0
        assert progress.batches == 0
        assert store.calls == ['select', 'delete']

    @pytest.mark.asyncio
    async def test_no_delay_once_expected_total_reached(self):
        store = InMemoryStore(rows_before(CUTOFF, 2000))
        sleep = RecordingSleep()

        await self._delete(store, batch_delay=5.0, sleep=sleep, expected_total=2000)

        assert sleep.delays == [5.0]

    @pytest.mark.asyncio
    async def test_invalid_batch_size(self):
        store = InMemoryStore()
        with pytest.raises(ValueError):
            await self._delete(store, batch_size=0)


class TestRetentionCleanup:
    """Test cases for a complete cleanup run."""

    @pytest.mark.asyncio
    async def test_full_run(self):
        rows = rows_before(CUTOFF, 2500)
        rows.update(recent_rows(20, start_id=10_000))
        store = InMemoryStore(rows)
        sleep = RecordingSleep()

        result = await run_cleanup(store, make_config(), now=NOW, sleep=sleep)

        assert result.success
        assert result.deleted == 2500
        assert result.batches == 3
        assert result.expired_found == 2500
        assert result.cutoff == CUTOFF
        assert result.error is None
        assert result.elapsed_seconds >= 0
        assert len(store.rows) == 20
        assert store.acquisitions == 1
        assert store.releases == 1

    @pytest.mark.asyncio
    async def test_no_expired_rows_skips_batch_loop(self):
        store = InMemoryStore(recent_rows(10, start_id=1))

        result = await run_cleanup(store, make_config(), now=NOW, sleep=RecordingSleep())

        assert result.success
        assert result.deleted == 0
        assert result.elapsed_seconds == 0
        assert result.batches == 0
        assert 'select' not in store.calls
        assert store.releases == 1

    @pytest.mark.asyncio
    async def test_persistent_failure_returns_failed_result_and_releases_once(self):
        store = InMemoryStore(rows_before(CUTOFF, 10))
        store.failures = {'select': 100}
        sleep = RecordingSleep()

        result = await run_cleanup(store, make_config(max_retries=3), now=NOW, sleep=sleep)

        assert not result.success
        assert "failed after 3 attempts" in result.error
        assert store.calls.count('select') == 3
        assert sleep.delays == [1.0, 2.0]
        assert store.releases == 1

    @pytest.mark.asyncio
    async def test_failure_mid_run_reports_committed_rows(self):
        store = InMemoryStore(rows_before(CUTOFF, 2500))
        store.delete_budget = 2

        result = await run_cleanup(store, make_config(max_retries=2), now=NOW, sleep=RecordingSleep())

        assert not result.success
        assert result.deleted == 2000
        assert result.batches == 2
        assert result.expired_found == 2500
        assert "failed after 2 attempts" in result.error
        assert store.releases == 1

    @pytest.mark.asyncio
    async def test_acquire_failure_is_captured(self):
        store = InMemoryStore(rows_before(CUTOFF, 10))
        store.fail_acquire = True

        result = await run_cleanup(store, make_config(), now=NOW, sleep=RecordingSleep())

        assert not result.success
        assert result.error == "store unreachable"
        assert result.cutoff == CUTOFF
        assert store.releases == 0

    @pytest.mark.asyncio
    async def test_count_failure_is_captured(self):
        store = InMemoryStore(rows_before(CUTOFF, 10))
        store.failures = {'count': 1}

        result = await run_cleanup(store, make_config(), now=NOW, sleep=RecordingSleep())

        assert not result.success
        assert result.error == "count failed"
        assert store.releases == 1
        assert len(store.rows) == 10

    @pytest.mark.asyncio
    async def test_release_failure_does_not_change_outcome(self):
        store = InMemoryStore(rows_before(CUTOFF, 10))
        store.fail_release = True

        result = await run_cleanup(store, make_config(), now=NOW, sleep=RecordingSleep())

        assert result.success
        assert result.deleted == 10
        assert store.releases == 1

    @pytest.mark.asyncio
    async def test_identifiers_are_sanitized_before_use(self, monkeypatch):
        seen = {}
        original = InMemoryConnection.count_expired

        async def spy(self, table, column, cutoff):
            seen['table'], seen['column'] = table, column
            return await original(self, table, column, cutoff)

        monkeypatch.setattr(InMemoryConnection, 'count_expired', spy)
        store = InMemoryStore(rows_before(CUTOFF, 3))
        config = make_config(table='monitoring; DROP TABLE x', timestamp_column='created-at')

        await RetentionCleanup(store, config, sleep=RecordingSleep(), clock=lambda: NOW).run()

        assert seen == {'table': 'monitoringDROPTABLEx', 'column': 'createdat'}
