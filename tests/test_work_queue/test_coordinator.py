"""
Tests for the claim coordinator.
"""

import pytest

from a11y_collector.storage.models import (
    CLAIM_FIELD, LAST_SCAN_FIELD, PRIORITY_FIELD, UNRESPONSIVE_STATUS
)
from a11y_collector.work_queue.coordinator import ClaimCoordinator

DAY_MS = 86400 * 1000


@pytest.fixture
def coordinator(store, clock):
    return ClaimCoordinator(store, "collector-a", batch_size=2, high_water=25, clock=clock)


def now_ms(clock) -> int:
    return int(clock() * 1000)


class TestClaimTiers:
    """Tier ordering and eligibility."""

    @pytest.mark.asyncio
    async def test_priority_tier_wins_and_orders_by_priority(self, store, coordinator, clock):
        never = store.add_item("https://example.edu/never")
        p10 = store.add_item("https://example.edu/p10", **{PRIORITY_FIELD: 10, LAST_SCAN_FIELD: now_ms(clock)})
        p3 = store.add_item("https://example.edu/p3", **{PRIORITY_FIELD: 3, LAST_SCAN_FIELD: now_ms(clock)})
        p50 = store.add_item("https://example.edu/p50", **{PRIORITY_FIELD: 50})

        claimed = await coordinator.try_claim_batch()

        assert claimed == 2
        assert store.items[p3][CLAIM_FIELD] == "collector-a"
        assert store.items[p10][CLAIM_FIELD] == "collector-a"
        assert CLAIM_FIELD not in store.items[p50]
        assert CLAIM_FIELD not in store.items[never]

    @pytest.mark.asyncio
    async def test_unscanned_tier_used_when_no_priority(self, store, coordinator, clock):
        stale = store.add_item("https://example.edu/stale", **{LAST_SCAN_FIELD: now_ms(clock) - 2 * DAY_MS})
        never = store.add_item("https://example.edu/never")

        claimed = await coordinator.try_claim_batch()

        assert claimed == 1
        assert store.items[never][CLAIM_FIELD] == "collector-a"
        assert CLAIM_FIELD not in store.items[stale]

    @pytest.mark.asyncio
    async def test_stale_tier_orders_oldest_first(self, store, coordinator, clock):
        recent = store.add_item("https://example.edu/recent", **{LAST_SCAN_FIELD: now_ms(clock) - 1000})
        old = store.add_item("https://example.edu/old", **{LAST_SCAN_FIELD: now_ms(clock) - 5 * DAY_MS})
        older = store.add_item("https://example.edu/older", **{LAST_SCAN_FIELD: now_ms(clock) - 9 * DAY_MS})
        oldish = store.add_item("https://example.edu/oldish", **{LAST_SCAN_FIELD: now_ms(clock) - 2 * DAY_MS})

        claimed = await coordinator.try_claim_batch()

        assert claimed == 2
        assert store.items[older][CLAIM_FIELD] == "collector-a"
        assert store.items[old][CLAIM_FIELD] == "collector-a"
        assert CLAIM_FIELD not in store.items[oldish]
        assert CLAIM_FIELD not in store.items[recent]

    @pytest.mark.asyncio
    async def test_ineligible_items_are_never_claimed(self, store, coordinator):
        store.add_item("https://example.edu/gone", status_code=404)
        store.add_item("https://example.edu/dead", status_code=UNRESPONSIVE_STATUS, **{PRIORITY_FIELD: 1})
        store.add_item("https://example.edu/theirs", **{CLAIM_FIELD: "collector-b", PRIORITY_FIELD: 1})

        assert await coordinator.try_claim_batch() == 0

    @pytest.mark.asyncio
    async def test_nothing_eligible_claims_nothing(self, coordinator):
        assert await coordinator.try_claim_batch() == 0

    @pytest.mark.asyncio
    async def test_explicit_token_and_batch_size(self, store, coordinator):
        for n in range(5):
            store.add_item(f"https://example.edu/{n}")

        claimed = await coordinator.try_claim_batch(instance_token="other", batch_size=4)

        assert claimed == 4
        assert await store.count({CLAIM_FIELD: "other"}) == 4


class TestBackpressure:
    """Claim suspension at the high-water mark."""

    @pytest.mark.asyncio
    async def test_claiming_suspended_at_high_water(self, store, coordinator):
        for n in range(25):
            store.add_item(f"https://example.edu/mine-{n}", **{CLAIM_FIELD: "collector-a"})
        store.add_item("https://example.edu/free")

        items = await coordinator.fetch_claimed()

        assert len(items) == 25
        assert coordinator.backpressure is True
        assert await coordinator.try_claim_batch() == 0
        assert ("find_and_claim",) not in store.calls

    @pytest.mark.asyncio
    async def test_claiming_resumes_below_high_water(self, store, coordinator):
        ids = [store.add_item(f"https://example.edu/mine-{n}", **{CLAIM_FIELD: "collector-a"})
               for n in range(25)]
        store.add_item("https://example.edu/free")
        await coordinator.fetch_claimed()

        await store.update_by_id(ids[0], {CLAIM_FIELD: None})
        await coordinator.fetch_claimed()

        assert coordinator.backpressure is False
        assert await coordinator.try_claim_batch() == 2

    def test_update_backpressure_threshold(self, coordinator):
        assert coordinator.update_backpressure(24) is False
        assert coordinator.update_backpressure(25) is True
        assert coordinator.update_backpressure(26) is True
        assert coordinator.update_backpressure(0) is False


class TestStoreErrors:
    """Store failures abandon the claim cycle."""

    @pytest.mark.asyncio
    async def test_claim_failure_returns_zero(self, store, coordinator):
        store.add_item("https://example.edu/a")
        store.fail_on.add("find_and_claim")

        assert await coordinator.try_claim_batch() == 0

    @pytest.mark.asyncio
    async def test_claim_failure_stops_at_first_tier(self, store, coordinator):
        store.fail_on.add("find_and_claim")

        await coordinator.try_claim_batch()

        assert store.calls.count(("find_and_claim",)) == 1
