"""
Scan execution pipeline.

Runs up to ``concurrency`` scan slots. Each slot takes one queue entry and
runs the full cycle for it: mark in flight, delete the URL's previous
records, scan, write the new records, stamp the catalog item and release
its claim. Engine failures count as a scan that found nothing so the claim
is still released; store failures abandon the cycle and leave the claim in
place for a later retry.
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..scanner.base import ScanEngine, ScanError, ScanOptions
from ..storage.base import StoreError, WorkItemStore
from ..storage.models import CLAIM_FIELD, LAST_SCAN_FIELD, PRIORITY_FIELD, URL_FIELD
from .dispatch import InFlightEntry, LocalDispatchQueue, QueueEntry
from .monitoring import CollectorStats

logger = logging.getLogger(__name__)

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"


@dataclass
class ScanOutcome:
    """Result of one delete-scan-write cycle."""
    url: str
    status: str
    issues_found: int = 0
    records_written: int = 0
    error: Optional[str] = None


@dataclass
class SlotState:
    """An occupied execution slot."""
    slot_id: int
    url: str
    started_at: float
    task: "asyncio.Task"


class ScanPipeline:
    """Pulls entries from the dispatch queue into a bounded set of scan slots."""

    def __init__(self, store: WorkItemStore, scanner: ScanEngine, queue: LocalDispatchQueue,
                 options: Optional[ScanOptions] = None, concurrency: int = 2,
                 flagged_domains: Iterable[str] = (), stats: Optional[CollectorStats] = None,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the pipeline.

        Args:
            store: Shared work item store
            scanner: Accessibility scan engine
            queue: Local dispatch queue to consume
            options: Options passed to every scan
            concurrency: Number of scan slots
            flagged_domains: Domains that are never scanned
            stats: Shared statistics object
            clock: Wall clock in seconds
        """
        self.store = store
        self.scanner = scanner
        self.queue = queue
        self.options = options or ScanOptions()
        self.concurrency = concurrency
        self.flagged_domains = set(flagged_domains)
        self.stats = stats or CollectorStats()
        self.clock = clock

        self.slots: Dict[int, SlotState] = {}
        self.completions = 0
        self._slot_ids = itertools.count(1)

    # ========================================
    # SLOTS
    # ========================================

    @property
    def busy_slots(self) -> int:
        return len(self.slots)

    def all_busy(self) -> bool:
        return len(self.slots) >= self.concurrency

    def slot_snapshot(self) -> frozenset:
        """Identity of the current slot occupancy."""
        return frozenset(self.slots)

    def dispatch(self) -> int:
        """
        Fill free slots from the queue. Must be called from the event loop.

        Returns:
            Number of scans started
        """
        started = 0
        while len(self.slots) < self.concurrency:
            entry = self.queue.dequeue_next()
            if entry is None:
                break
            self._start_slot(entry)
            started += 1

        return started

    def _start_slot(self, entry: QueueEntry) -> SlotState:
        # Marked before the task is scheduled so a claim tick running in
        # between cannot queue the same URL again.
        in_flight = self.queue.mark_in_flight(entry.url)

        slot_id = next(self._slot_ids)
        task = asyncio.create_task(self.process_entry(entry, in_flight), name=f"scan-slot-{slot_id}")
        slot = SlotState(slot_id=slot_id, url=entry.url, started_at=self.clock(), task=task)
        self.slots[slot_id] = slot
        task.add_done_callback(lambda t, s=slot: self._release(s, t))

        logger.debug(f"Slot {slot_id} started {entry.url}")
        return slot

    def _release(self, slot: SlotState, task: "asyncio.Task") -> None:
        if self.slots.get(slot.slot_id) is slot:
            del self.slots[slot.slot_id]
        self.completions += 1

        if task.cancelled():
            logger.debug(f"Slot {slot.slot_id} cancelled ({slot.url})")
        elif task.exception() is not None:
            logger.error(f"Error (slot {slot.slot_id}, {slot.url}): {task.exception()}")

    def reset(self) -> int:
        """
        Forget every occupied slot so new work can be dispatched. Abandoned
        scans keep running and may still update their catalog items.

        Returns:
            Number of slots cleared
        """
        cleared = len(self.slots)
        self.slots.clear()
        return cleared

    async def drain(self, timeout: float) -> None:
        """Wait up to ``timeout`` seconds for running scans to finish."""
        tasks = [slot.task for slot in self.slots.values()]
        if not tasks:
            return

        logger.info(f"Waiting up to {timeout:.0f}s for {len(tasks)} running scans")
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()

    # ========================================
    # SCAN CYCLE
    # ========================================

    async def process_entry(self, entry: QueueEntry,
                            in_flight: Optional[InFlightEntry] = None) -> Optional[ScanOutcome]:
        """
        Run the full cycle for one claimed URL.

        Args:
            entry: Dequeued entry
            in_flight: In-flight marker if the caller already created one

        Returns:
            Scan outcome, or None if a store error abandoned the cycle
        """
        if in_flight is None:
            in_flight = self.queue.mark_in_flight(entry.url)

        self.stats.scans_started += 1

        try:
            outcome = await self.scan_url(entry.url, entry.domain)
            await self.store.update_by_id(entry.id, {
                LAST_SCAN_FIELD: int(self.clock() * 1000),
                CLAIM_FIELD: None,
                PRIORITY_FIELD: None
            })
        except StoreError as e:
            self.stats.scans_abandoned += 1
            logger.error(f"Error (processScan {entry.url}): {str(e)}")
            return None
        finally:
            self.queue.mark_complete(entry.url, in_flight)

        self.stats.scans_completed += 1
        return outcome

    async def scan_url(self, url: str, domain: str) -> ScanOutcome:
        """
        Replace the stored records for a URL with a fresh scan.

        Args:
            url: URL to scan
            domain: Domain recorded with every issue

        Returns:
            Scan outcome

        Raises:
            StoreError: If deleting old records or writing new ones fails
        """
        logger.info(f"Scan {url}")

        await self.store.delete_by_query({URL_FIELD: url})

        if domain in self.flagged_domains:
            logger.info(f"Skipping flagged domain {domain}")
            self.stats.scans_skipped += 1
            return ScanOutcome(url=url, status=STATUS_SKIPPED)

        try:
            issues = await self.scanner.scan(url, self.options)
        except ScanError as e:
            self.stats.scan_errors += 1
            logger.error(f"Scanning failed for {url}: {str(e)}")
            return ScanOutcome(url=url, status=STATUS_FAILED, error=str(e))

        if not issues:
            logger.info(f"Scan complete: 0 results for {url}")
            return ScanOutcome(url=url, status=STATUS_COMPLETED)

        started = time.monotonic()
        written = await self.store.bulk_insert(self.stamp_issues(issues, url, domain))
        self.stats.records_written += written

        logger.info(f"Scan complete: Logged {written} records in {(time.monotonic() - started) * 1000:.0f}ms.")
        return ScanOutcome(url=url, status=STATUS_COMPLETED, issues_found=len(issues), records_written=written)

    def stamp_issues(self, issues: List[Dict[str, Any]], url: str, domain: str) -> List[Dict[str, Any]]:
        """Tag each issue with the URL, domain and scan date."""
        scanned_at = int(self.clock() * 1000)
        return [{**issue, "url": url, "domain": domain, "date": scanned_at} for issue in issues]
