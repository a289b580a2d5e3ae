"""
Claim coordinator: reserves URLs in the shared catalog for this instance.

Claiming is a three-tier search, stopping at the first tier that claims
anything:

1. Explicitly prioritised items (priority 1-999), lowest value first.
2. Items that have never been scanned.
3. Items last scanned more than ``rescan_after_seconds`` ago, oldest first.

Every tier only considers items answering 200 and carrying no claim.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Any, List, Optional, Tuple

from ..storage.base import StoreError, WorkItemStore
from ..storage.models import (
    CLAIM_FIELD, ELIGIBLE_STATUS, LAST_SCAN_FIELD, PRIORITY_FIELD, PRIORITY_MAX,
    PRIORITY_MIN, STATUS_FIELD, WorkItem
)

logger = logging.getLogger(__name__)


@dataclass
class ClaimTier:
    """One eligibility class of the claim search."""
    name: str
    query: Dict[str, Any]
    sort: List[Tuple[str, str]] = field(default_factory=list)


class ClaimCoordinator:
    """Marks bounded batches of eligible catalog items with this instance's claim token."""

    def __init__(self, store: WorkItemStore, instance_token: str, batch_size: int = 2,
                 high_water: int = 25, rescan_after_seconds: float = 86400,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the claim coordinator.

        Args:
            store: Shared work item store
            instance_token: Claim token written by this instance
            batch_size: Maximum items claimed per tier per invocation
            high_water: Claimed-but-unprocessed count that suspends claiming
            rescan_after_seconds: Age after which a scanned item is due again
            clock: Wall clock in seconds
        """
        self.store = store
        self.instance_token = instance_token
        self.batch_size = batch_size
        self.high_water = high_water
        self.rescan_after_seconds = rescan_after_seconds
        self.clock = clock

        self.backpressure = False

    def build_tiers(self) -> List[ClaimTier]:
        """Build the claim tiers in priority order."""
        unclaimed = {"exists": False}
        cutoff_ms = int((self.clock() - self.rescan_after_seconds) * 1000)

        return [
            ClaimTier(
                name="priority",
                query={
                    PRIORITY_FIELD: {"gte": PRIORITY_MIN, "lte": PRIORITY_MAX},
                    STATUS_FIELD: ELIGIBLE_STATUS,
                    CLAIM_FIELD: unclaimed
                },
                sort=[(PRIORITY_FIELD, "asc")]
            ),
            ClaimTier(
                name="unscanned",
                query={
                    STATUS_FIELD: ELIGIBLE_STATUS,
                    LAST_SCAN_FIELD: {"exists": False},
                    CLAIM_FIELD: unclaimed
                }
            ),
            ClaimTier(
                name="stale",
                query={
                    STATUS_FIELD: ELIGIBLE_STATUS,
                    LAST_SCAN_FIELD: {"lt": cutoff_ms},
                    CLAIM_FIELD: unclaimed
                },
                sort=[(LAST_SCAN_FIELD, "asc")]
            )
        ]

    def claimed_query(self, instance_token: Optional[str] = None) -> Dict[str, Any]:
        """Query matching items claimed by an instance."""
        return {CLAIM_FIELD: instance_token or self.instance_token}

    def update_backpressure(self, claimed_count: int) -> bool:
        """
        Suspend claiming while this instance holds ``high_water`` or more
        unprocessed claims; resume once the count drops below it.

        Returns:
            Current backpressure flag
        """
        suspended = claimed_count >= self.high_water

        if suspended and not self.backpressure:
            logger.info(f"Claiming suspended: {claimed_count} items already claimed by {self.instance_token}")
        elif not suspended and self.backpressure:
            logger.info(f"Claiming resumed: {claimed_count} items claimed by {self.instance_token}")

        self.backpressure = suspended
        return suspended

    async def fetch_claimed(self) -> List[WorkItem]:
        """
        Read back items claimed by this instance (up to the high-water mark)
        and refresh the backpressure flag from the result.
        """
        items = await self.store.search(
            self.claimed_query(),
            sort=[(PRIORITY_FIELD, "asc")],
            limit=self.high_water
        )
        self.update_backpressure(len(items))
        return items

    async def try_claim_batch(self, instance_token: Optional[str] = None,
                              batch_size: Optional[int] = None) -> int:
        """
        Claim the next batch of work, one tier at a time.

        Args:
            instance_token: Claim token to write (default: this instance's token)
            batch_size: Per-tier cap (default: configured batch size)

        Returns:
            Number of items claimed; 0 while backpressure is active or when a
            store error abandons the cycle
        """
        if self.backpressure:
            logger.debug("Claiming skipped: backpressure active")
            return 0

        token = instance_token or self.instance_token
        limit = batch_size or self.batch_size

        for tier in self.build_tiers():
            try:
                claimed = await self.store.find_and_claim(tier.query, tier.sort or None, limit, token)
            except StoreError as e:
                logger.error(f"Error (claim {tier.name}): {str(e)}")
                return 0

            if claimed:
                logger.info(f"Claimed {claimed} {tier.name} URLs for {token}")
                return claimed

        logger.debug("No eligible URLs to claim")
        return 0
