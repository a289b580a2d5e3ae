"""
Data models for the URL catalog and the scan record index.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

# URL catalog field names
URL_FIELD = "url"
DOMAIN_FIELD = "domain"
STATUS_FIELD = "status_code"
LAST_SCAN_FIELD = "last_a11y_scan"
PRIORITY_FIELD = "a11y_scan_priority"
CLAIM_FIELD = "a11y_scan_claim"

# Only items answering 200 are scanned
ELIGIBLE_STATUS = 200

# Sentinel status for URLs presumed dead after repeatedly failing to drain
UNRESPONSIVE_STATUS = 800

PRIORITY_MIN = 1
PRIORITY_MAX = 999


@dataclass
class WorkItem:
    """One URL in the catalog, as read back from the store."""
    id: str
    url: str
    domain: str
    status_code: Optional[int] = None
    last_scan_time: Optional[int] = None
    priority: Optional[int] = None
    claim_token: Optional[str] = None

    @classmethod
    def from_source(cls, item_id: str, source: Dict[str, Any]) -> 'WorkItem':
        """Create a WorkItem from a stored catalog document."""
        return cls(
            id=item_id,
            url=source.get(URL_FIELD, ''),
            domain=source.get(DOMAIN_FIELD, ''),
            status_code=source.get(STATUS_FIELD),
            last_scan_time=source.get(LAST_SCAN_FIELD),
            priority=source.get(PRIORITY_FIELD),
            claim_token=source.get(CLAIM_FIELD)
        )
