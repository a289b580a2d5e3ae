"""
Shared fixtures: an in-memory work item store and a scripted scan engine.
"""

import asyncio
import itertools
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import pytest

from a11y_collector.scanner.base import ScanEngine, ScanError, ScanOptions
from a11y_collector.storage.base import StoreError, WorkItemStore
from a11y_collector.storage.models import (
    CLAIM_FIELD, DOMAIN_FIELD, ELIGIBLE_STATUS, STATUS_FIELD, URL_FIELD, WorkItem
)

RANGE_CHECKS = {
    "gt": lambda a, b: a > b,
    "gte": lambda a, b: a >= b,
    "lt": lambda a, b: a < b,
    "lte": lambda a, b: a <= b,
}


def matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    """Evaluate the store query language against one document."""
    for key, condition in (query or {}).items():
        value = doc.get(key)

        if isinstance(condition, dict):
            if "exists" in condition and (value is not None) != condition["exists"]:
                return False
            for op, check in RANGE_CHECKS.items():
                if op in condition and (value is None or not check(value, condition[op])):
                    return False
        elif isinstance(condition, list):
            if value not in condition:
                return False
        elif value != condition:
            return False

    return True


def sort_docs(docs: List[Dict[str, Any]], sort) -> List[Dict[str, Any]]:
    """Sort documents, missing values last regardless of direction."""
    ordered = list(docs)
    for field, order in reversed(sort or []):
        present = [d for d in ordered if d.get(field) is not None]
        missing = [d for d in ordered if d.get(field) is None]
        present.sort(key=lambda d: d[field], reverse=(order == "desc"))
        ordered = present + missing
    return ordered


class InMemoryWorkItemStore(WorkItemStore):
    """Work item store kept in dictionaries, with optional failure injection."""

    def __init__(self):
        self.items: Dict[str, Dict[str, Any]] = {}
        self.records: List[Dict[str, Any]] = []
        self.indices: Dict[str, bool] = {}
        self.fail_on = set()
        self.calls: List[tuple] = []
        self.initialized = False
        self.closed = False
        self._ids = itertools.count(1)

    def add_item(self, url: str, status_code: int = ELIGIBLE_STATUS, **fields) -> str:
        item_id = f"item-{next(self._ids)}"
        doc = {URL_FIELD: url, DOMAIN_FIELD: urlparse(url).hostname, STATUS_FIELD: status_code}
        doc.update(fields)
        self.items[item_id] = doc
        return item_id

    def _check(self, operation: str) -> None:
        self.calls.append((operation,))
        if operation in self.fail_on:
            raise StoreError(f"{operation} unavailable")

    async def initialize(self) -> None:
        self.initialized = True

    async def close(self) -> None:
        self.closed = True

    async def find_and_claim(self, query, sort, limit, claim_value) -> int:
        self._check("find_and_claim")
        pairs = [(item_id, doc) for item_id, doc in self.items.items() if matches(doc, query)]
        ordered = sort_docs([doc for _, doc in pairs], sort)[:limit]
        for doc in ordered:
            doc[CLAIM_FIELD] = claim_value
        return len(ordered)

    async def search(self, query, sort=None, limit=100) -> List[WorkItem]:
        self._check("search")
        by_identity = {id(doc): item_id for item_id, doc in self.items.items()}
        docs = sort_docs([doc for doc in self.items.values() if matches(doc, query)], sort)[:limit]
        return [WorkItem.from_source(by_identity[id(doc)], doc) for doc in docs]

    async def count(self, query) -> int:
        self._check("count")
        return sum(1 for doc in self.items.values() if matches(doc, query))

    async def update_by_id(self, item_id, fields) -> None:
        self._check("update_by_id")
        doc = self.items[item_id]
        for key, value in fields.items():
            if value is None:
                doc.pop(key, None)
            else:
                doc[key] = value

    async def delete_by_query(self, query) -> int:
        self._check("delete_by_query")
        kept = [r for r in self.records if not matches(r, query)]
        deleted = len(self.records) - len(kept)
        self.records = kept
        return deleted

    async def bulk_insert(self, records) -> int:
        self._check("bulk_insert")
        self.records.extend(records)
        return len(records)

    async def create_indices(self, include_url_index: bool = False) -> Dict[str, bool]:
        self._check("create_indices")
        wanted = ["records"] + (["urls"] if include_url_index else [])
        created = {}
        for name in wanted:
            created[name] = name not in self.indices
            self.indices[name] = True
        return created


class FakeScanner(ScanEngine):
    """
    Scan engine returning scripted results.

    ``results`` maps a URL to a list of issues or an exception to raise;
    URLs in ``blocking`` wait on ``release`` before returning.
    """

    def __init__(self, results: Optional[Dict[str, Any]] = None):
        self.results = results or {}
        self.scanned: List[str] = []
        self.blocking = set()
        self.release = asyncio.Event()

    async def scan(self, url: str, options: ScanOptions) -> List[Dict[str, Any]]:
        self.scanned.append(url)
        if url in self.blocking:
            await self.release.wait()

        result = self.results.get(url, [])
        if isinstance(result, ScanError):
            raise result
        return list(result)


def make_issue(code: str = "WCAG2AA.Principle1.Guideline1_1.1_1_1.H37", **fields) -> Dict[str, Any]:
    issue = {
        "code": code,
        "type": "error",
        "typeCode": 1,
        "message": "Img element missing an alt attribute.",
        "context": "<img src=\"logo.png\">",
        "selector": "html > body > img"
    }
    issue.update(fields)
    return issue


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def store():
    return InMemoryWorkItemStore()


@pytest.fixture
def scanner():
    return FakeScanner()


@pytest.fixture
def clock():
    return FakeClock()


async def settle():
    """Wait for every other task on the loop, including abandoned scans."""
    current = asyncio.current_task()
    tasks = [t for t in asyncio.all_tasks() if t is not current]
    await asyncio.gather(*tasks, return_exceptions=True)
