"""
Continuous Scheduler Process

Drives the control loop at a fixed interval (default 5 minutes):
1. Store liveness guard (skip the tick if the database is unreachable)
2. Pool snapshot refresh
3. One automation cycle (decide + execute)

A warm-up tick runs shortly after start-up, outside the regular interval.
Ticks never overlap: the automation tick is a PeriodicTask, so a manual
trigger arriving during a scheduled tick is skipped.
"""

import asyncio
import signal
import threading
from typing import Optional

from vaultpilot.database import Store
from vaultpilot.executor import VaultAutomation
from vaultpilot.pools import load_tracked_pools
from vaultpilot.scheduler.periodic_task import PeriodicTask, TaskRunResult
from vaultpilot.scheduler.task_tracker import TaskExecutionTracker
from vaultpilot.tracker import SnapshotTracker
from vaultpilot.utils import get_logger

logger = get_logger(__name__)

TICK_TASK_NAME = 'automation_tick'


class ContinuousScheduler:
    """
    Continuous scheduler process.

    Owns the automation tick and the loop that fires it.
    """

    def __init__(
        self,
        store: Store,
        tracker: SnapshotTracker,
        automation: VaultAutomation,
        interval_seconds: float = 300,
        warmup_delay_seconds: float = 5
    ):
        self.store = store
        self.tracker = tracker
        self.automation = automation
        self.interval_seconds = interval_seconds
        self.warmup_delay_seconds = warmup_delay_seconds
        self.shutdown_event = threading.Event()

        self.tick = PeriodicTask(
            TICK_TASK_NAME,
            self._tick,
            store=store,
            precondition=store.is_connected,
            precondition_reason='store_unavailable',
        )

        logger.info(
            f"ContinuousScheduler initialized: interval={interval_seconds:.0f}s, "
            f"warm-up after {warmup_delay_seconds:.0f}s, {len(tracker.pools)} pools"
        )

    @classmethod
    def from_config(cls, config, store: Optional[Store] = None, dry_run: bool = True) -> "ContinuousScheduler":
        store = store or Store.from_config()
        tracker = SnapshotTracker.from_config(config, store, load_tracked_pools(config))
        automation = VaultAutomation.from_config(config, store, tracker, dry_run=dry_run)

        return cls(
            store=store,
            tracker=tracker,
            automation=automation,
            interval_seconds=config.get('scheduler.interval_minutes', 5) * 60,
            warmup_delay_seconds=config.get('scheduler.warmup_delay_seconds', 5),
        )

    # =========================================================================
    # TICK
    # =========================================================================

    def _tick(self, tracker: TaskExecutionTracker) -> None:
        """Refresh snapshots, then run one automation cycle"""
        snapshots = self.tracker.refresh_all()
        tracker.add_metadata('snapshots', len(snapshots))
        tracker.add_metadata('snapshots_ok', sum(1 for s in snapshots if s.success))

        record = self.automation.run_cycle()
        if record is None:
            tracker.add_metadata('automation', 'skipped')
            return

        tracker.add_metadata('decision', record.decision)
        tracker.add_metadata('automation_success', record.success)

    def run_once(self, triggered_by: str = 'system', task_type: str = 'scheduler') -> TaskRunResult:
        """Run one tick now (through the non-overlap guard)"""
        result = self.tick.run(triggered_by=triggered_by, task_type=task_type)
        if result.skipped:
            logger.info(f"Tick skipped: {result.skip_reason}")
        elif result.success:
            logger.info(f"Tick completed in {result.duration:.1f}s: {result.metadata}")
        return result

    # =========================================================================
    # LOOP
    # =========================================================================

    async def _sleep_until_shutdown(self, seconds: float) -> None:
        remaining = seconds
        while remaining > 0 and not self.shutdown_event.is_set():
            step = min(1.0, remaining)
            await asyncio.sleep(step)
            remaining -= step

    async def run_continuous(self):
        """Main continuous scheduler loop"""
        logger.info("Starting continuous scheduler loop")
        loop = asyncio.get_running_loop()

        await self._sleep_until_shutdown(self.warmup_delay_seconds)
        if not self.shutdown_event.is_set():
            logger.info("Running warm-up tick")
            await loop.run_in_executor(None, self.run_once, 'system', 'warmup')

        while not self.shutdown_event.is_set():
            await self._sleep_until_shutdown(self.interval_seconds)
            if self.shutdown_event.is_set():
                break

            try:
                await loop.run_in_executor(None, self.run_once)
            except Exception as e:
                logger.error(f"Scheduler error: {e}", exc_info=True)

        logger.info("Scheduler loop ended")

    def handle_shutdown(self, signum, frame):
        """Handle shutdown signals"""
        logger.info(f"Shutdown requested (signal {signum})")
        self.shutdown_event.set()

    def run(self):
        """Main entry point"""
        signal.signal(signal.SIGINT, self.handle_shutdown)
        signal.signal(signal.SIGTERM, self.handle_shutdown)

        try:
            asyncio.run(self.run_continuous())
        except KeyboardInterrupt:
            pass
        finally:
            logger.info("Scheduler process terminated")
