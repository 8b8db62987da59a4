"""
Retention Scheduler for the retention daemon.

This module handles automated scheduling of cleanup runs, manual triggers,
and the run statistics accumulated across them.
"""

import asyncio
import logging
import signal
from datetime import datetime, timedelta, tzinfo
from typing import Awaitable, Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..monitoring.retention_metrics import RetentionMetrics
from .interfaces import RetentionStore
from .retention_cleanup import RetentionCleanup
from .retention_config import parse_daily_schedule, validate_config
from .retention_errors import ConfigurationError
from .retention_models import (
    HealthSnapshot, RetentionConfig, RunResult, SchedulerState, SchedulerStats
)
from .retention_monitoring import check_health

ALREADY_RUNNING = "cleanup already in progress"


class RetentionScheduler:
    """
    Automated scheduler for retention cleanup runs.

    Features:
    - Daily scheduling in a configured timezone
    - Manual triggers sharing the same statistics
    - Single-flight: at most one run at any time
    - Deferred health check after start
    - Graceful shutdown that lets an in-flight run finish
    """

    def __init__(
        self,
        config: RetentionConfig,
        store: RetentionStore,
        metrics: Optional[RetentionMetrics] = None,
        clock: Optional[Callable[[Optional[tzinfo]], datetime]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.config = config
        self.store = store
        self.metrics = metrics
        self.logger = logging.getLogger(__name__)
        self._clock = clock or datetime.now
        self._sleep = sleep
        self.cleanup = RetentionCleanup(store, config, sleep=sleep)

        # Scheduler state
        self._state = SchedulerState.IDLE
        self._task: Optional[asyncio.Task] = None
        self._health_task: Optional[asyncio.Task] = None
        self._current_run: Optional[asyncio.Future] = None
        self._run_in_progress = False
        self._tz: Optional[tzinfo] = None
        self._runs_attempted = 0
        self._runs_succeeded = 0
        self._runs_failed = 0
        self._last_run: Optional[datetime] = None
        self._next_run: Optional[datetime] = None
        self._last_slot: Optional[datetime] = None
        self._last_error: Optional[str] = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    def _resolve_timezone(self) -> tzinfo:
        try:
            return ZoneInfo(self.config.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigurationError(f"Unknown timezone: {self.config.timezone!r}")

    def _now(self) -> datetime:
        return self._clock(self._tz)

    def compute_next_run(self, now: Optional[datetime] = None) -> datetime:
        """
        Next occurrence of the configured hour and minute.

        This is an approximation valid for daily schedules only: day-of-month,
        month and weekday fields are not evaluated.
        """
        hour, minute = parse_daily_schedule(self.config.schedule)
        if now is None:
            now = self._now()
            # A wall clock lagging the event loop must not fire a slot twice.
            if self._last_slot is not None and now < self._last_slot:
                now = self._last_slot
        candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    async def start(self):
        """Start the retention scheduler."""
        try:
            validate_config(self.config)
            tz = self._resolve_timezone()
        except ConfigurationError as e:
            self.logger.error(f"💥 Failed to start retention scheduler: {e}")
            raise

        if self._state is SchedulerState.RUNNING:
            self.logger.warning("Retention scheduler is already running")
            return

        if not self.config.scheduler_enabled:
            self.logger.info("Retention scheduler is disabled")
            return

        self._tz = tz
        self.logger.info("🕘 Starting retention scheduler...")
        self.logger.info(f"⏰ Schedule: {self.config.schedule} ({self.config.timezone})")
        self.logger.info(f"📅 Retention: {self.config.retention_months} months")
        self.logger.info(f"📦 Batch size: {self.config.batch_size} rows")

        self._state = SchedulerState.RUNNING
        self._next_run = self.compute_next_run()
        self._task = asyncio.create_task(self._scheduler_loop())
        self._health_task = asyncio.create_task(self._deferred_health_check())

        self.logger.info(f"✅ Retention scheduler started, next run: {self._next_run.isoformat()}")

    async def stop(self):
        """Stop the retention scheduler. An in-flight run is allowed to finish."""
        if self._state is not SchedulerState.RUNNING:
            return

        self.logger.info("Stopping retention scheduler...")
        self._state = SchedulerState.STOPPED

        for task in (self._task, self._health_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._health_task = None
        self._next_run = None

        if self._current_run is not None and not self._current_run.done():
            self.logger.info("Waiting for in-flight cleanup run to finish...")
            await asyncio.wait([self._current_run])

        self.logger.info("🛑 Retention scheduler stopped")

    async def _scheduler_loop(self):
        """Sleep until each scheduled time and fire a run."""
        while self._state is SchedulerState.RUNNING:
            self._next_run = self.compute_next_run()
            delay = (self._next_run - self._now()).total_seconds()
            await self._sleep(max(delay, 0.0))

            if self._state is not SchedulerState.RUNNING:
                break

            self._last_slot = self._next_run
            self.logger.info("⏰ Scheduled cleanup firing")
            await self._fire("scheduled")

    async def _deferred_health_check(self):
        await self._sleep(self.config.health_check_delay_seconds)
        self.logger.info("🏥 Running initial health check...")
        await self.health_check()

    async def trigger(self) -> RunResult:
        """Run a cleanup now, outside the recurring schedule."""
        self.logger.info("🔧 Manual cleanup requested")
        return await self._fire("manual")

    async def _fire(self, source: str) -> RunResult:
        # Check-and-set with no await in between keeps runs single-flight.
        if self._run_in_progress:
            self.logger.warning(f"Skipping {source} cleanup: {ALREADY_RUNNING}")
            if self.metrics is not None:
                self.metrics.record_skipped()
            return RunResult(success=False, deleted=0, elapsed_seconds=0.0,
                             started_at=self._now(), error=ALREADY_RUNNING)

        self._run_in_progress = True
        self._current_run = asyncio.ensure_future(self._execute_run(source))
        # Shielded so that stopping the scheduler never interrupts a run.
        return await asyncio.shield(self._current_run)

    async def _execute_run(self, source: str) -> RunResult:
        try:
            self._runs_attempted += 1
            self._last_run = self._now()
            run_number = self._runs_attempted
            self.logger.info(f"🎯 Executing {source} cleanup (#{run_number})")

            result = await self.cleanup.run()

            if result.success:
                self._runs_succeeded += 1
                self._last_error = None
                self.logger.info(f"✅ Run #{run_number} completed successfully")
            else:
                self._runs_failed += 1
                self._last_error = result.error
                self.logger.error(f"❌ Run #{run_number} failed: {result.error}")

            if self.metrics is not None:
                self.metrics.record_run(result)

            if self._state is SchedulerState.RUNNING:
                self._next_run = self.compute_next_run()
                self.logger.info(f"🔮 Next run: {self._next_run.isoformat()}")

            return result
        finally:
            self._run_in_progress = False

    async def health_check(self) -> HealthSnapshot:
        """Take a health snapshot of the retained table."""
        snapshot = await check_health(self.store, self.config)
        if self.metrics is not None:
            self.metrics.record_health(snapshot)
        return snapshot

    def get_stats(self) -> SchedulerStats:
        """Get a snapshot of the scheduler statistics."""
        return SchedulerStats(
            state=self._state,
            runs_attempted=self._runs_attempted,
            runs_succeeded=self._runs_succeeded,
            runs_failed=self._runs_failed,
            last_run=self._last_run,
            next_run=self._next_run,
            last_error=self._last_error,
            run_in_progress=self._run_in_progress
        )

    def install_signal_handlers(self, stop_event: asyncio.Event):
        """Set ``stop_event`` on SIGINT/SIGTERM so the caller can stop gracefully."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum: int):
            self.logger.info(f"Received signal {signum}, initiating graceful shutdown...")
            stop_event.set()

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except NotImplementedError:
                signal.signal(signum, lambda s, f: loop.call_soon_threadsafe(stop_event.set))


def create_retention_scheduler(
    config: RetentionConfig,
    store: RetentionStore,
    metrics: Optional[RetentionMetrics] = None
) -> RetentionScheduler:
    """Create a new retention scheduler instance."""
    return RetentionScheduler(config, store, metrics=metrics)
