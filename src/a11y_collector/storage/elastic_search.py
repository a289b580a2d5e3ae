"""
Elasticsearch implementation of the Work Item Store.

The URL catalog and the scan records live in two separate indices. Claims
are written with ``_update_by_query`` bounded by ``max_docs`` and run with
``conflicts=proceed``: a document changed by another instance between the
search and the write fails its version check and is simply not claimed, so
the claim behaves as a per-document compare-and-swap on the claim field.
"""

import logging
from typing import Any, Dict, List, Optional

from elasticsearch import AsyncElasticsearch, ApiError, BadRequestError, TransportError
from elasticsearch.helpers import BulkIndexError, async_bulk

from .base import Query, SortOrder, StoreError, WorkItemStore
from .models import (
    CLAIM_FIELD, DOMAIN_FIELD, LAST_SCAN_FIELD, PRIORITY_FIELD, STATUS_FIELD,
    URL_FIELD, WorkItem
)

logger = logging.getLogger(__name__)

STORE_ERRORS = (ApiError, TransportError, BulkIndexError)

RANGE_OPERATORS = ("gt", "gte", "lt", "lte")

# Scan record mapping, one document per accessibility issue
RECORD_MAPPING = {
    "properties": {
        "url": {"type": "keyword"},
        "domain": {"type": "keyword"},
        "date": {"type": "date", "format": "epoch_millis"},
        "code": {"type": "keyword"},
        "context": {"type": "text"},
        "message": {"type": "text"},
        "selector": {"type": "keyword"},
        "type": {"type": "keyword"},
        "typeCode": {"type": "integer"}
    }
}

# URL catalog mapping
URL_MAPPING = {
    "properties": {
        URL_FIELD: {"type": "keyword"},
        DOMAIN_FIELD: {"type": "keyword"},
        STATUS_FIELD: {"type": "integer"},
        LAST_SCAN_FIELD: {"type": "date", "format": "epoch_millis"},
        PRIORITY_FIELD: {"type": "integer"},
        CLAIM_FIELD: {"type": "keyword"}
    }
}

# Fields the collector writes and sorts on, absent from crawler-created catalogs
COORDINATION_FIELDS = (PRIORITY_FIELD, CLAIM_FIELD)

CLAIM_SCRIPT = f"ctx._source.{CLAIM_FIELD} = params.claim"


def build_query(query: Optional[Query]) -> Dict[str, Any]:
    """
    Translate a store query dictionary into an Elasticsearch bool query.

    Args:
        query: Query dictionary (see ``storage.base``)

    Returns:
        Elasticsearch query DSL
    """
    if not query:
        return {"match_all": {}}

    filters = []
    must_not = []

    for key, value in query.items():
        if isinstance(value, dict):
            if "exists" in value:
                clause = {"exists": {"field": key}}
                if value["exists"]:
                    filters.append(clause)
                else:
                    must_not.append(clause)

            bounds = {op: value[op] for op in RANGE_OPERATORS if op in value}
            if bounds:
                filters.append({"range": {key: bounds}})
        elif isinstance(value, list):
            filters.append({"terms": {key: value}})
        else:
            filters.append({"term": {key: value}})

    bool_query: Dict[str, Any] = {}
    if filters:
        bool_query["filter"] = filters
    if must_not:
        bool_query["must_not"] = must_not

    return {"bool": bool_query}


def build_sort(sort: Optional[SortOrder]) -> List[Dict[str, Any]]:
    """
    Translate a sort order into search-body sort clauses.

    Every clause carries an ``unmapped_type`` so sorting on a catalog field
    that no document has set yet does not fail the search.
    """
    properties = URL_MAPPING["properties"]
    return [
        {field: {"order": order, "unmapped_type": properties.get(field, {}).get("type", "keyword")}}
        for field, order in sort or []
    ]


class ElasticsearchWorkItemStore(WorkItemStore):
    """Work Item Store backed by two Elasticsearch indices."""

    def __init__(self, conn_params: Dict[str, Any]):
        """
        Initialize the Elasticsearch store.

        Args:
            conn_params: Connection parameters
                - hosts: List of Elasticsearch hosts (default: ['http://localhost:9200'])
                - url_index: Name of the URL catalog index (required)
                - record_index: Name of the scan record index (required)
                - username: Optional username for authentication
                - password: Optional password for authentication
                - ca_certs: Optional path to CA certificates
                - verify_certs: Whether to verify SSL certificates (default: True)
                - request_timeout: Request timeout in seconds (default: 30)
        """
        self.conn_params = conn_params

        self.url_index = conn_params['url_index']
        self.record_index = conn_params['record_index']

        self.es_config: Dict[str, Any] = {
            'hosts': conn_params.get('hosts', ['http://localhost:9200']),
            'verify_certs': conn_params.get('verify_certs', True),
            'request_timeout': conn_params.get('request_timeout', 30),
            'retry_on_timeout': True,
            'max_retries': 3
        }

        username = conn_params.get('username')
        password = conn_params.get('password')
        if username and password:
            self.es_config['basic_auth'] = (username, password)

        if conn_params.get('ca_certs'):
            self.es_config['ca_certs'] = conn_params['ca_certs']

        # Created in initialize()
        self.es: Optional[AsyncElasticsearch] = None

    # ========================================
    # CONNECTION
    # ========================================

    async def initialize(self) -> None:
        """Connect to Elasticsearch and verify the cluster is reachable."""
        self.es = AsyncElasticsearch(**self.es_config)

        try:
            if not await self.es.ping():
                raise StoreError("Could not connect to Elasticsearch")
        except STORE_ERRORS as e:
            raise StoreError(f"Could not connect to Elasticsearch: {str(e)}") from e

        logger.info(f"Connected to Elasticsearch (catalog: {self.url_index}, records: {self.record_index})")

        await self.ensure_catalog_fields()

    async def ensure_catalog_fields(self) -> bool:
        """
        Add the claim and priority fields to an existing catalog mapping.

        Catalogs created by the crawler do not map these fields, and the
        sorted claim update fails on an unmapped sort field.

        Returns:
            True if the mapping was updated
        """
        es = self._client()
        properties = {field: URL_MAPPING["properties"][field] for field in COORDINATION_FIELDS}

        try:
            if not await es.indices.exists(index=self.url_index):
                logger.warning(f"URL catalog index {self.url_index} does not exist")
                return False

            await es.indices.put_mapping(index=self.url_index, properties=properties)
        except BadRequestError as e:
            # The fields are already mapped with another type; sorting still works
            logger.warning(f"Could not add coordination fields to {self.url_index}: {str(e)}")
            return False
        except STORE_ERRORS as e:
            logger.error(f"Error updating catalog mapping: {str(e)}")
            raise StoreError(f"Mapping update failed for {self.url_index}: {str(e)}") from e

        logger.debug(f"Coordination fields mapped on {self.url_index}")
        return True

    async def close(self) -> None:
        """Close the Elasticsearch client."""
        if self.es:
            await self.es.close()
        self.es = None

    def _client(self) -> AsyncElasticsearch:
        if not self.es:
            raise StoreError("Store not initialized")
        return self.es

    # ========================================
    # URL CATALOG
    # ========================================

    async def find_and_claim(self, query: Query, sort: Optional[SortOrder],
                             limit: int, claim_value: str) -> int:
        """Claim up to ``limit`` catalog items with a single update-by-query."""
        es = self._client()

        kwargs: Dict[str, Any] = {}
        if sort:
            kwargs['sort'] = [f"{field}:{order}" for field, order in sort]

        try:
            response = await es.update_by_query(
                index=self.url_index,
                query=build_query(query),
                script={
                    "source": CLAIM_SCRIPT,
                    "lang": "painless",
                    "params": {"claim": claim_value}
                },
                max_docs=limit,
                conflicts="proceed",
                refresh=True,
                **kwargs
            )
        except STORE_ERRORS as e:
            logger.error(f"Error claiming work items: {str(e)}")
            raise StoreError(f"Claim failed: {str(e)}") from e

        updated = response.get('updated', 0)
        conflicts = response.get('version_conflicts', 0)
        if conflicts:
            logger.debug(f"Claim skipped {conflicts} items changed by another instance")

        return updated

    async def search(self, query: Query, sort: Optional[SortOrder] = None,
                     limit: int = 100) -> List[WorkItem]:
        """Find catalog items matching a query."""
        es = self._client()

        try:
            result = await es.search(
                index=self.url_index,
                query=build_query(query),
                sort=build_sort(sort) or None,
                size=limit
            )
        except STORE_ERRORS as e:
            logger.error(f"Error searching work items: {str(e)}")
            raise StoreError(f"Search failed: {str(e)}") from e

        return [WorkItem.from_source(hit['_id'], hit['_source'])
                for hit in result['hits']['hits']]

    async def count(self, query: Query) -> int:
        """Count catalog items matching a query."""
        es = self._client()

        try:
            result = await es.count(index=self.url_index, query=build_query(query))
        except STORE_ERRORS as e:
            logger.error(f"Error counting work items: {str(e)}")
            raise StoreError(f"Count failed: {str(e)}") from e

        return result['count']

    async def update_by_id(self, item_id: str, fields: Dict[str, Any]) -> None:
        """Partially update a catalog item; waits for the change to be searchable."""
        es = self._client()

        try:
            await es.update(index=self.url_index, id=item_id, doc=fields, refresh="wait_for")
        except STORE_ERRORS as e:
            logger.error(f"Error updating work item {item_id}: {str(e)}")
            raise StoreError(f"Update of {item_id} failed: {str(e)}") from e

    # ========================================
    # SCAN RECORDS
    # ========================================

    async def delete_by_query(self, query: Query) -> int:
        """Delete scan records matching a query."""
        es = self._client()

        try:
            response = await es.delete_by_query(
                index=self.record_index,
                query=build_query(query),
                conflicts="proceed",
                refresh=True
            )
        except STORE_ERRORS as e:
            logger.error(f"Error deleting scan records: {str(e)}")
            raise StoreError(f"Delete failed: {str(e)}") from e

        deleted = response.get('deleted', 0)
        logger.info(f"Deleted {deleted} previous records in {response.get('took', 0)} ms.")
        return deleted

    async def bulk_insert(self, records: List[Dict[str, Any]]) -> int:
        """Index scan records in bulk."""
        if not records:
            return 0

        es = self._client()
        actions = [{"_index": self.record_index, "_source": record} for record in records]

        try:
            success, _ = await async_bulk(es, actions)
        except STORE_ERRORS as e:
            logger.error(f"Error writing scan records: {str(e)}")
            raise StoreError(f"Bulk write failed: {str(e)}") from e

        return success

    # ========================================
    # INDEX SETUP
    # ========================================

    async def create_indices(self, include_url_index: bool = False) -> Dict[str, bool]:
        """Create the record index, and the catalog index when requested."""
        es = self._client()

        wanted = [(self.record_index, RECORD_MAPPING)]
        if include_url_index:
            wanted.append((self.url_index, URL_MAPPING))

        created = {}
        for index_name, mapping in wanted:
            try:
                if await es.indices.exists(index=index_name):
                    logger.info(f"Index {index_name} already exists, mapping cannot be recreated.")
                    created[index_name] = False
                    continue

                await es.indices.create(index=index_name, mappings=mapping)
                logger.info(f"Index {index_name} created.")
                created[index_name] = True
            except STORE_ERRORS as e:
                logger.error(f"Error creating index {index_name}: {str(e)}")
                raise StoreError(f"Index creation failed for {index_name}: {str(e)}") from e

        return created
