"""
Crawl work coordination for distributed accessibility scanning.

Multiple collector instances share one URL catalog. Each instance claims
small batches of URLs by writing its claim token into the catalog, keeps
the claimed URLs in a local FIFO, scans them in a bounded number of slots
and releases the claims as scans complete.

Key Features:
- Three-tier claim search (prioritised, never scanned, stale)
- Backpressure once an instance holds too many unprocessed claims
- In-flight deduplication with expiry of abandoned scans
- Tombstoning of URLs that repeatedly fail to drain
- Health monitor that resets a wedged pipeline
"""

from .coordinator import ClaimCoordinator
from .dispatch import LocalDispatchQueue, QueueEntry, InFlightEntry, EnqueueResult
from .pipeline import ScanPipeline, ScanOutcome
from .health import HealthMonitor
from .dead_letter import UnresponsiveTombstone
from .worker import CollectorWorker

__all__ = [
    'ClaimCoordinator',
    'LocalDispatchQueue',
    'QueueEntry',
    'InFlightEntry',
    'EnqueueResult',
    'ScanPipeline',
    'ScanOutcome',
    'HealthMonitor',
    'UnresponsiveTombstone',
    'CollectorWorker'
]
