"""
Local dispatch queue: claimed-but-not-yet-scanned URLs plus the set of
URLs currently being scanned by this instance.

The queue is process-local and owned by the worker's event loop; it is
rebuilt from the store's claim read-back after a restart.
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from ..storage.models import WorkItem

logger = logging.getLogger(__name__)


class EnqueueResult(Enum):
    """What happened to a claimed item offered to the queue."""
    QUEUED = "queued"
    REAPPEARED = "reappeared"
    IN_FLIGHT = "in_flight"
    TOMBSTONE = "tombstone"


@dataclass
class QueueEntry:
    """A claimed URL waiting for a free scan slot."""
    id: str
    url: str
    domain: str
    reappear_count: int = 0


@dataclass
class InFlightEntry:
    """A URL currently being scanned."""
    url: str
    claimed_at: float


class LocalDispatchQueue:
    """FIFO of claimed URLs with in-flight tracking and stale-entry expiry."""

    def __init__(self, reappear_limit: int = 30, inflight_expiry_seconds: float = 120.0,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize the dispatch queue.

        Args:
            reappear_limit: Re-observations of a queued URL before it is tombstoned
            inflight_expiry_seconds: Age after which an in-flight entry is abandoned
            clock: Monotonic clock in seconds
        """
        self.reappear_limit = reappear_limit
        self.inflight_expiry_seconds = inflight_expiry_seconds
        self.clock = clock

        self._queue: "OrderedDict[str, QueueEntry]" = OrderedDict()
        self._in_flight: Dict[str, InFlightEntry] = {}

    def __len__(self) -> int:
        return len(self._queue)

    def __contains__(self, url: str) -> bool:
        return url in self._queue

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def is_in_flight(self, url: str) -> bool:
        return url in self._in_flight

    def get(self, url: str) -> Optional[QueueEntry]:
        return self._queue.get(url)

    def enqueue_if_absent(self, item: WorkItem,
                          count_reappearance: bool = True) -> Tuple[EnqueueResult, Optional[QueueEntry]]:
        """
        Offer a claimed item to the queue.

        An item already queued has its reappear count incremented; once the
        count reaches the limit the entry is removed and returned with
        ``TOMBSTONE`` so the caller can retire the URL. Items currently
        in flight are skipped.

        Args:
            item: Claimed work item read back from the store
            count_reappearance: Increment the reappear count of an already
                queued entry. Pass False when the entry had no free slot to
                drain into since it was last seen.

        Returns:
            Tuple of (result, entry)
        """
        self.sweep_expired()

        if item.url in self._in_flight:
            return EnqueueResult.IN_FLIGHT, None

        entry = self._queue.get(item.url)
        if entry is not None:
            if not count_reappearance:
                return EnqueueResult.REAPPEARED, entry

            entry.reappear_count += 1
            if entry.reappear_count >= self.reappear_limit:
                del self._queue[item.url]
                logger.warning(f"URL {item.url} reappeared {entry.reappear_count} times without draining")
                return EnqueueResult.TOMBSTONE, entry
            return EnqueueResult.REAPPEARED, entry

        entry = QueueEntry(id=item.id, url=item.url, domain=item.domain)
        self._queue[item.url] = entry
        return EnqueueResult.QUEUED, entry

    def ingest(self, items: List[WorkItem], count_reappearances: bool = True) -> List[QueueEntry]:
        """
        Offer a page of claimed items to the queue.

        Args:
            items: Claimed work items read back from the store
            count_reappearances: Whether already queued entries count as reappeared

        Returns:
            Entries that crossed the reappear limit and must be tombstoned
        """
        tombstones = []
        queued = 0
        for item in items:
            result, entry = self.enqueue_if_absent(item, count_reappearance=count_reappearances)
            if result is EnqueueResult.TOMBSTONE:
                tombstones.append(entry)
            elif result is EnqueueResult.QUEUED:
                queued += 1

        if queued:
            logger.info(f"URL Cache: {len(self._queue)} URLs waiting scan")

        return tombstones

    def dequeue_next(self) -> Optional[QueueEntry]:
        """Remove and return the oldest queued entry, or None when empty."""
        self.sweep_expired()

        if not self._queue:
            return None

        _, entry = self._queue.popitem(last=False)
        return entry

    def mark_in_flight(self, url: str) -> InFlightEntry:
        """
        Record that a scan for ``url`` has started.

        Raises:
            ValueError: If the URL is already in flight
        """
        self.sweep_expired()

        if url in self._in_flight:
            raise ValueError(f"{url} is already in flight")

        entry = InFlightEntry(url=url, claimed_at=self.clock())
        self._in_flight[url] = entry
        return entry

    def mark_complete(self, url: str, entry: Optional[InFlightEntry] = None) -> bool:
        """
        Remove the in-flight entry for ``url``.

        When ``entry`` is given, only that exact entry is removed, so a scan
        abandoned by expiry or a health reset cannot clear the entry of a
        newer scan of the same URL.

        Returns:
            True if an entry was removed
        """
        current = self._in_flight.get(url)
        if current is None:
            return False
        if entry is not None and current is not entry:
            return False

        del self._in_flight[url]
        return True

    def sweep_expired(self) -> List[str]:
        """
        Drop in-flight entries older than the expiry so their URLs can be
        re-queued from the next claim read-back.

        Returns:
            URLs whose in-flight entries expired
        """
        now = self.clock()
        expired = [url for url, entry in self._in_flight.items()
                   if now - entry.claimed_at >= self.inflight_expiry_seconds]

        for url in expired:
            del self._in_flight[url]
            logger.warning(f"In-flight scan of {url} expired after {self.inflight_expiry_seconds:.0f}s")

        return expired

    def reset_in_flight(self) -> int:
        """Forget every in-flight entry. Returns the number cleared."""
        cleared = len(self._in_flight)
        self._in_flight.clear()
        return cleared
