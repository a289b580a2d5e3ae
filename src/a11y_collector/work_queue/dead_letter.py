"""
Unresponsive tombstone: retires URLs that repeatedly fail to drain.

A tombstoned URL gets the sentinel status 800, loses its priority and
claim, and has its scan time stamped. It is never claimed again until the
catalog entry is re-activated by hand.
"""

import logging
import time
from typing import Callable

from ..storage.base import StoreError, WorkItemStore
from ..storage.models import (
    CLAIM_FIELD, LAST_SCAN_FIELD, PRIORITY_FIELD, STATUS_FIELD, UNRESPONSIVE_STATUS
)
from .dispatch import QueueEntry

logger = logging.getLogger(__name__)


class UnresponsiveTombstone:
    """Marks catalog items as presumed dead."""

    def __init__(self, store: WorkItemStore, clock: Callable[[], float] = time.time):
        """
        Initialize the tombstone handler.

        Args:
            store: Shared work item store
            clock: Wall clock in seconds
        """
        self.store = store
        self.clock = clock

    async def tombstone(self, entry: QueueEntry) -> bool:
        """
        Retire a queue entry's URL.

        Args:
            entry: Entry that crossed the reappear limit

        Returns:
            True if the catalog item was updated
        """
        fields = {
            STATUS_FIELD: UNRESPONSIVE_STATUS,
            PRIORITY_FIELD: None,
            CLAIM_FIELD: None,
            LAST_SCAN_FIELD: int(self.clock() * 1000)
        }

        try:
            await self.store.update_by_id(entry.id, fields)
        except StoreError as e:
            logger.error(f"Error (tombstone {entry.url}): {str(e)}")
            return False

        logger.warning(
            f"Marked {entry.url} unresponsive after {entry.reappear_count} claims without a completed scan"
        )
        return True
