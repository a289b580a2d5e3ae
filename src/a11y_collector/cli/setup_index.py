#!/usr/bin/env python3
"""
Create the Elasticsearch indices used by the collector.
"""

import argparse
import asyncio
import logging
import sys
from typing import Dict, List, Optional

from .. import Config, ConfigurationError
from ..storage.base import StoreError, WorkItemStore
from . import add_logging_arguments, configure_logging

logger = logging.getLogger(__name__)


async def create_indices(store: WorkItemStore, include_url_index: bool) -> Dict[str, bool]:
    """Connect, create the indices and disconnect."""
    await store.initialize()
    try:
        return await store.create_indices(include_url_index=include_url_index)
    finally:
        await store.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for index setup."""
    parser = argparse.ArgumentParser(description="Create the accessibility record index")
    parser.add_argument(
        "--config", "-c",
        help="Path to configuration file (overrides A11Y_COLLECTOR_CONFIG_PATH)"
    )
    parser.add_argument(
        "--with-url-index",
        action="store_true",
        help="Also create the URL catalog index"
    )
    add_logging_arguments(parser)

    args = parser.parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    try:
        store = Config(args.config).get_work_item_store()
        created = asyncio.run(create_indices(store, args.with_url_index))
    except ConfigurationError as e:
        logger.error(str(e))
        return 1
    except StoreError as e:
        logger.error(f"Error with index creation: {str(e)}")
        return 1

    for index_name, was_created in created.items():
        if was_created:
            print(f"Index {index_name} schema created.")
        else:
            print(f"Index {index_name} already exists, mapping cannot be recreated.")

    return 0


if __name__ == "__main__":
    sys.exit(main())
