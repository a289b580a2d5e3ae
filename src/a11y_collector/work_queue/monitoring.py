"""
Collector statistics and catalog-level queue metrics.
"""

import logging
import time
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict, Any, Optional

from ..storage.base import WorkItemStore
from ..storage.models import (
    CLAIM_FIELD, ELIGIBLE_STATUS, LAST_SCAN_FIELD, PRIORITY_FIELD, PRIORITY_MAX,
    PRIORITY_MIN, STATUS_FIELD, UNRESPONSIVE_STATUS
)

logger = logging.getLogger(__name__)


@dataclass
class CollectorStats:
    """Counters kept by one collector instance."""
    scans_started: int = 0
    scans_completed: int = 0
    scan_errors: int = 0
    scans_skipped: int = 0
    scans_abandoned: int = 0
    records_written: int = 0
    claims: int = 0
    tombstoned: int = 0
    health_resets: int = 0
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)


@dataclass
class QueueMetrics:
    """Catalog-wide view of the crawl work."""
    timestamp: datetime
    eligible: int
    never_scanned: int
    due_for_rescan: int
    prioritized: int
    claimed: int
    unresponsive: int
    claimed_by_instance: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data


async def collect_queue_metrics(store: WorkItemStore, rescan_after_seconds: float = 86400,
                                instance_token: Optional[str] = None) -> QueueMetrics:
    """
    Count catalog items in each scheduling state.

    Args:
        store: Work item store
        rescan_after_seconds: Age after which a scanned item is due again
        instance_token: Optionally also count claims held by this token

    Returns:
        Queue metrics
    """
    cutoff_ms = int((time.time() - rescan_after_seconds) * 1000)

    metrics = QueueMetrics(
        timestamp=datetime.now(),
        eligible=await store.count({STATUS_FIELD: ELIGIBLE_STATUS}),
        never_scanned=await store.count({
            STATUS_FIELD: ELIGIBLE_STATUS,
            LAST_SCAN_FIELD: {"exists": False}
        }),
        due_for_rescan=await store.count({
            STATUS_FIELD: ELIGIBLE_STATUS,
            LAST_SCAN_FIELD: {"lt": cutoff_ms}
        }),
        prioritized=await store.count({
            STATUS_FIELD: ELIGIBLE_STATUS,
            PRIORITY_FIELD: {"gte": PRIORITY_MIN, "lte": PRIORITY_MAX}
        }),
        claimed=await store.count({CLAIM_FIELD: {"exists": True}}),
        unresponsive=await store.count({STATUS_FIELD: UNRESPONSIVE_STATUS})
    )

    if instance_token:
        metrics.claimed_by_instance = await store.count({CLAIM_FIELD: instance_token})

    logger.debug(f"Collected queue metrics: {metrics.to_dict()}")
    return metrics
