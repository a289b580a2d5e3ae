"""
Abstract interface for the shared Work Item Store.

The store holds two collections: the URL catalog (one document per known
URL, carrying scan state and an optional claim token) and the scan records
(one document per accessibility issue). Every collector instance talks to
the same store, and all cross-instance coordination happens through the
conditional claim update it offers.

Queries use a small dictionary language shared by all backends:

    {"status_code": 200}                       exact match
    {"domain": ["a.edu", "b.edu"]}             any of the values
    {"a11y_scan_claim": {"exists": False}}     field missing or null
    {"a11y_scan_priority": {"gte": 1, "lte": 999}}
    {"last_a11y_scan": {"lt": 1700000000000}}

Sort orders are lists of ``(field, "asc" | "desc")`` tuples.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from .models import WorkItem

Query = Dict[str, Any]
SortOrder = List[Tuple[str, str]]


class StoreError(Exception):
    """Raised when a store operation fails; the caller abandons the current cycle."""


class WorkItemStore(ABC):
    """Work Item Store used by the crawl work coordinator."""

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections to the backing store."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close connections to the backing store."""
        pass

    @abstractmethod
    async def find_and_claim(self, query: Query, sort: Optional[SortOrder],
                             limit: int, claim_value: str) -> int:
        """
        Atomically set the claim field on up to ``limit`` catalog items.

        Args:
            query: Items eligible for the claim
            sort: Order in which eligible items are claimed
            limit: Maximum number of items to claim, never exceeded
            claim_value: Claim token to write

        Returns:
            Number of items claimed
        """
        pass

    @abstractmethod
    async def search(self, query: Query, sort: Optional[SortOrder] = None,
                     limit: int = 100) -> List[WorkItem]:
        """
        Find catalog items matching a query.

        Args:
            query: Query dictionary
            sort: Optional sort order
            limit: Maximum number of items returned

        Returns:
            Matching work items
        """
        pass

    @abstractmethod
    async def count(self, query: Query) -> int:
        """Count catalog items matching a query."""
        pass

    @abstractmethod
    async def update_by_id(self, item_id: str, fields: Dict[str, Any]) -> None:
        """
        Partially update one catalog item. A ``None`` value clears the field.

        Args:
            item_id: Store-assigned item identifier
            fields: Fields to set
        """
        pass

    @abstractmethod
    async def delete_by_query(self, query: Query) -> int:
        """
        Delete scan records matching a query.

        Returns:
            Number of records deleted
        """
        pass

    @abstractmethod
    async def bulk_insert(self, records: List[Dict[str, Any]]) -> int:
        """
        Insert scan records.

        Returns:
            Number of records written
        """
        pass

    @abstractmethod
    async def create_indices(self, include_url_index: bool = False) -> Dict[str, bool]:
        """
        Create the scan record index (and optionally the URL catalog index).

        Args:
            include_url_index: Also create the URL catalog index

        Returns:
            Mapping of index name to True if created, False if it already existed
        """
        pass
