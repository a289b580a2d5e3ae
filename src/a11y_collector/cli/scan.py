#!/usr/bin/env python3
"""
Scan a single URL once: delete its previous records, scan it and store the
new records. No claiming or catalog updates take place.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional
from urllib.parse import urlparse

from .. import Config, ConfigurationError
from ..storage.base import StoreError
from ..work_queue.dispatch import LocalDispatchQueue
from ..work_queue.pipeline import STATUS_FAILED, ScanOutcome, ScanPipeline
from . import add_logging_arguments, configure_logging

logger = logging.getLogger(__name__)


async def scan_once(config: Config, url: str) -> ScanOutcome:
    """
    Run one delete-scan-write cycle for ``url``.

    Args:
        config: Collector configuration
        url: URL to scan

    Returns:
        Scan outcome
    """
    store = config.get_work_item_store()
    pipeline = ScanPipeline(
        store,
        config.get_scanner(),
        LocalDispatchQueue(),
        options=config.get_scan_options()
    )

    await store.initialize()
    try:
        return await pipeline.scan_url(url, urlparse(url).hostname or '')
    finally:
        await store.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for one-shot scans."""
    parser = argparse.ArgumentParser(description="Scan a single URL for accessibility issues")
    parser.add_argument("url", help="URL to scan")
    parser.add_argument(
        "--config", "-c",
        help="Path to configuration file (overrides A11Y_COLLECTOR_CONFIG_PATH)"
    )
    add_logging_arguments(parser)

    args = parser.parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    parsed = urlparse(args.url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        logger.error(f"Not an http(s) URL: {args.url}")
        return 1

    try:
        outcome = asyncio.run(scan_once(Config(args.config), args.url))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {str(e)}")
        return 1
    except StoreError as e:
        logger.error(f"Store error: {str(e)}")
        return 1

    if outcome.status == STATUS_FAILED:
        print(f"Accessibility scan on {args.url} failed: {outcome.error}")
        return 1

    print(f"Accessibility scan on {args.url} logged {outcome.records_written} records.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
