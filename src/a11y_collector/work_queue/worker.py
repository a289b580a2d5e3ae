"""
Collector worker: the single-process scheduler driving claim, dispatch
and health ticks.

Each tick is a step function. Three timer loops run on one event loop and
re-arm themselves after every step; scan slots run as separate tasks so a
slow store call or scan never blocks the timers.
"""

import asyncio
import inspect
import logging
import signal
import time
from dataclasses import dataclass
from typing import Callable, Dict, Any, Optional

from ..config import CollectorSettings
from ..scanner.base import ScanEngine, ScanOptions
from ..storage.base import StoreError, WorkItemStore
from .coordinator import ClaimCoordinator
from .dead_letter import UnresponsiveTombstone
from .dispatch import LocalDispatchQueue
from .health import HealthMonitor, stale_ticks_for
from .monitoring import CollectorStats
from .pipeline import ScanPipeline

logger = logging.getLogger(__name__)


@dataclass
class SchedulerState:
    """Mutable scheduler state owned by the worker's event loop."""
    running: bool = False
    stop_requested: bool = False
    claim_ticks: int = 0
    dispatch_ticks: int = 0
    health_ticks: int = 0


class CollectorWorker:
    """
    One collector instance. Claims URLs from the shared catalog, scans
    them and writes the results, until asked to stop.
    """

    def __init__(self, settings: CollectorSettings, store: WorkItemStore, scanner: ScanEngine,
                 options: Optional[ScanOptions] = None,
                 wall_clock: Callable[[], float] = time.time,
                 monotonic_clock: Callable[[], float] = time.monotonic):
        """
        Initialize the collector worker.

        Args:
            settings: Scheduling parameters
            store: Shared work item store (initialized by ``run``)
            scanner: Accessibility scan engine
            options: Options passed to every scan
            wall_clock: Clock used for stored timestamps
            monotonic_clock: Clock used for in-flight expiry
        """
        self.settings = settings
        self.store = store
        self.instance_token = settings.instance_token

        self.state = SchedulerState()
        self.stats = CollectorStats()
        self._stop_event: Optional[asyncio.Event] = None

        # True while every slot has been busy since the last claim tick
        self._busy_since_claim = False

        self.queue = LocalDispatchQueue(
            reappear_limit=settings.reappear_limit,
            inflight_expiry_seconds=settings.inflight_expiry_seconds,
            clock=monotonic_clock
        )
        self.coordinator = ClaimCoordinator(
            store,
            settings.instance_token,
            batch_size=settings.claim_batch_size,
            high_water=settings.claim_high_water,
            rescan_after_seconds=settings.rescan_after_seconds,
            clock=wall_clock
        )
        self.tombstone = UnresponsiveTombstone(store, clock=wall_clock)
        self.pipeline = ScanPipeline(
            store,
            scanner,
            self.queue,
            options=options,
            concurrency=settings.concurrency,
            flagged_domains=settings.flagged_domains,
            stats=self.stats,
            clock=wall_clock
        )
        self.health = HealthMonitor(
            self.pipeline,
            self.queue,
            stale_ticks=stale_ticks_for(settings.stale_after_seconds, settings.health_interval_seconds),
            stats=self.stats
        )

        logger.info(f"Initialized CollectorWorker: {self.instance_token}")

    # ========================================
    # TICKS
    # ========================================

    async def claim_tick(self) -> int:
        """
        Read back this instance's claims, claim more if allowed, and refill
        the local queue when it is running low.

        Returns:
            Number of entries tombstoned during this tick
        """
        self.state.claim_ticks += 1

        try:
            claimed_items = await self.coordinator.fetch_claimed()
        except StoreError as e:
            logger.error(f"Error (populateURLCache): {str(e)}")
            return 0

        # A queued entry only counts as reappeared if a slot was free at
        # some point since the previous claim tick.
        slot_was_free = not (self._busy_since_claim and self.pipeline.all_busy())
        self._busy_since_claim = self.pipeline.all_busy()

        tombstoned = 0
        if len(self.queue) < self.settings.refill_threshold:
            for entry in self.queue.ingest(claimed_items, count_reappearances=slot_was_free):
                if await self.tombstone.tombstone(entry):
                    tombstoned += 1
        self.stats.tombstoned += tombstoned

        self.stats.claims += await self.coordinator.try_claim_batch()
        return tombstoned

    def dispatch_tick(self) -> int:
        """Start scans for every free slot. Returns the number started."""
        self.state.dispatch_ticks += 1
        started = self.pipeline.dispatch()
        if not self.pipeline.all_busy():
            self._busy_since_claim = False
        return started

    def health_tick(self) -> bool:
        """Check pipeline progress. Returns True if a reset was forced."""
        self.state.health_ticks += 1
        return self.health.check()

    # ========================================
    # LIFECYCLE
    # ========================================

    async def run(self) -> Dict[str, Any]:
        """
        Run the collector until ``stop`` is called or a signal arrives.

        Returns:
            Collector statistics
        """
        logger.info(f"Starting collector {self.instance_token}")

        self._stop_event = asyncio.Event()
        self.state.running = True
        self.stats.start_time = time.time()

        self._install_signal_handlers()

        try:
            await self.store.initialize()

            await asyncio.gather(
                self._every(self.settings.claim_interval_seconds, self.claim_tick, "claim"),
                self._every(self.settings.dispatch_interval_seconds, self.dispatch_tick, "dispatch"),
                self._every(self.settings.health_interval_seconds, self.health_tick, "health")
            )

            await self.pipeline.drain(self.settings.shutdown_grace_seconds)
        finally:
            self._cleanup()
            await self.store.close()

        self.stats.end_time = time.time()
        logger.info(
            f"Collector {self.instance_token} stopped: {self.stats.scans_completed} scans completed, "
            f"{self.stats.scan_errors} failed, {self.stats.records_written} records written"
        )
        return self.stats.to_dict()

    def stop(self) -> None:
        """Request a graceful shutdown."""
        logger.info(f"Shutdown requested for collector {self.instance_token}")
        self.state.stop_requested = True
        if self._stop_event is not None:
            self._stop_event.set()

    async def _every(self, interval: float, step: Callable[[], Any], name: str) -> None:
        """Run ``step`` every ``interval`` seconds until a stop is requested."""
        while not self.state.stop_requested:
            try:
                result = step()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in {name} tick: {str(e)}")
                logger.debug("Exception details:", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._signal_handler, signum)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handler for {signum} not supported here")

    def _signal_handler(self, signum: int) -> None:
        logger.info(f"Collector {self.instance_token} received {signal.Signals(signum).name} signal")
        self.stop()

    def _cleanup(self) -> None:
        self.state.running = False
        try:
            loop = asyncio.get_running_loop()
            for signum in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(signum)
        except (NotImplementedError, RuntimeError):
            pass
