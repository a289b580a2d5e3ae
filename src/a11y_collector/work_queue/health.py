"""
Health monitor for the scan pipeline.

Runs on its own timer. A tick that finds every slot busy counts towards
staleness, and the count keeps growing while the occupants stay the same
as on the previous tick. Once it reaches the threshold the pipeline is
considered wedged (for example a headless browser that never returns) and
all local slot and in-flight state is dropped so fresh work can be
dispatched.
"""

import logging
import math
from typing import Optional

from .dispatch import LocalDispatchQueue
from .monitoring import CollectorStats
from .pipeline import ScanPipeline

logger = logging.getLogger(__name__)


def stale_ticks_for(stale_after_seconds: float, interval_seconds: float) -> int:
    """Number of health ticks covering ``stale_after_seconds``."""
    return max(1, math.ceil(stale_after_seconds / interval_seconds))


class HealthMonitor:
    """Detects a pipeline with no forward progress and forces a local reset."""

    def __init__(self, pipeline: ScanPipeline, queue: LocalDispatchQueue, stale_ticks: int = 5,
                 stats: Optional[CollectorStats] = None):
        """
        Initialize the health monitor.

        Args:
            pipeline: Pipeline to observe
            queue: Dispatch queue whose in-flight entries are cleared on reset
            stale_ticks: Consecutive all-busy ticks with the same occupants before a reset
            stats: Shared statistics object
        """
        self.pipeline = pipeline
        self.queue = queue
        self.stale_ticks = stale_ticks
        self.stats = stats or CollectorStats()

        self.staleness = 0
        self._last_snapshot: Optional[frozenset] = None

    def check(self) -> bool:
        """
        Run one health tick.

        Returns:
            True if the tick forced a reset
        """
        snapshot = self.pipeline.slot_snapshot()

        if not self.pipeline.all_busy():
            self.staleness = 0
        elif snapshot == self._last_snapshot:
            self.staleness += 1
        else:
            # Newly filled slots count as the first stale observation, so a
            # reset lands within ``stale_ticks`` intervals of the slots filling
            self.staleness = 1

        if self.staleness > 1:
            logger.warning(
                f"Scanner Health: Stalled, {self.pipeline.busy_slots} busy slots unchanged "
                f"for {self.staleness} checks"
            )
        else:
            logger.info(f"Scanner Health: Active, {self.pipeline.completions} scans")

        self._last_snapshot = snapshot

        if self.staleness >= self.stale_ticks:
            self.reset()
            return True

        return False

    def reset(self) -> None:
        """Clear all slot and in-flight state and the staleness counter."""
        slots = self.pipeline.reset()
        in_flight = self.queue.reset_in_flight()

        self.staleness = 0
        self._last_snapshot = None
        self.stats.health_resets += 1

        logger.warning(f"Scanner Health: Reset scanner, released {slots} slots and {in_flight} in-flight URLs")
