"""
Tests for retiring unresponsive URLs.
"""

import pytest

from a11y_collector.storage.models import (
    CLAIM_FIELD, LAST_SCAN_FIELD, PRIORITY_FIELD, STATUS_FIELD, UNRESPONSIVE_STATUS
)
from a11y_collector.work_queue.coordinator import ClaimCoordinator
from a11y_collector.work_queue.dead_letter import UnresponsiveTombstone
from a11y_collector.work_queue.dispatch import QueueEntry


@pytest.mark.asyncio
async def test_tombstone_marks_item_unresponsive(store, clock):
    item_id = store.add_item("https://example.edu/dead", **{CLAIM_FIELD: "collector-a", PRIORITY_FIELD: 7})
    entry = QueueEntry(id=item_id, url="https://example.edu/dead", domain="example.edu", reappear_count=30)

    assert await UnresponsiveTombstone(store, clock=clock).tombstone(entry) is True

    doc = store.items[item_id]
    assert doc[STATUS_FIELD] == UNRESPONSIVE_STATUS
    assert doc[LAST_SCAN_FIELD] == int(clock() * 1000)
    assert CLAIM_FIELD not in doc
    assert PRIORITY_FIELD not in doc


@pytest.mark.asyncio
async def test_tombstoned_item_is_never_claimed(store, clock):
    item_id = store.add_item("https://example.edu/dead", **{PRIORITY_FIELD: 1})
    entry = QueueEntry(id=item_id, url="https://example.edu/dead", domain="example.edu")
    await UnresponsiveTombstone(store, clock=clock).tombstone(entry)

    clock.advance(30 * 86400)
    coordinator = ClaimCoordinator(store, "collector-a", clock=clock)

    assert await coordinator.try_claim_batch() == 0


@pytest.mark.asyncio
async def test_store_error_is_reported(store, clock):
    item_id = store.add_item("https://example.edu/dead")
    store.fail_on.add("update_by_id")
    entry = QueueEntry(id=item_id, url="https://example.edu/dead", domain="example.edu")

    assert await UnresponsiveTombstone(store, clock=clock).tombstone(entry) is False
    assert store.items[item_id][STATUS_FIELD] == 200
