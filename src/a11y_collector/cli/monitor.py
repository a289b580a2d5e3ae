#!/usr/bin/env python3
"""
CLI for inspecting the state of the shared URL catalog.
"""

import argparse
import asyncio
import json
import logging
import sys
import time
from typing import List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from .. import Config, ConfigurationError
from ..storage.base import StoreError
from ..work_queue.monitoring import QueueMetrics, collect_queue_metrics
from . import add_logging_arguments, configure_logging

logger = logging.getLogger(__name__)

console = Console()


async def fetch_metrics(config: Config, instance_token: Optional[str]) -> QueueMetrics:
    """Connect to the store and collect queue metrics."""
    store = config.get_work_item_store()
    settings = config.config['collector']

    await store.initialize()
    try:
        return await collect_queue_metrics(
            store,
            rescan_after_seconds=float(settings.get('rescan_after_seconds', 86400)),
            instance_token=instance_token
        )
    finally:
        await store.close()


def render_metrics(metrics: QueueMetrics) -> Table:
    """Build a rich table for queue metrics."""
    table = Table(title="URL Catalog Status", box=box.ROUNDED)
    table.add_column("State", style="cyan")
    table.add_column("URLs", justify="right")

    table.add_row("Eligible (status 200)", str(metrics.eligible))
    table.add_row("Never scanned", str(metrics.never_scanned))
    table.add_row("Due for rescan", str(metrics.due_for_rescan))
    table.add_row("Prioritised", str(metrics.prioritized))
    table.add_row("Claimed", str(metrics.claimed))
    if metrics.claimed_by_instance is not None:
        table.add_row("  by this instance", str(metrics.claimed_by_instance))
    table.add_row("[red]Unresponsive (800)[/red]", str(metrics.unresponsive))

    return table


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the status monitor."""
    parser = argparse.ArgumentParser(description="Show crawl work status for the URL catalog")
    parser.add_argument(
        "--config", "-c",
        help="Path to configuration file (overrides A11Y_COLLECTOR_CONFIG_PATH)"
    )
    parser.add_argument(
        "--instance-token",
        help="Also count URLs claimed by this token"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print metrics as JSON"
    )
    parser.add_argument(
        "--watch", "-w",
        type=float,
        metavar="SECONDS",
        help="Refresh every SECONDS until interrupted"
    )
    add_logging_arguments(parser)

    args = parser.parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    try:
        config = Config(args.config)

        while True:
            metrics = asyncio.run(fetch_metrics(config, args.instance_token))

            if args.json:
                print(json.dumps(metrics.to_dict(), indent=2))
            else:
                console.print(render_metrics(metrics))

            if not args.watch:
                break
            time.sleep(args.watch)

    except ConfigurationError as e:
        logger.error(str(e))
        return 1
    except StoreError as e:
        logger.error(f"Store unavailable: {str(e)}")
        return 1
    except KeyboardInterrupt:
        return 0

    return 0


if __name__ == "__main__":
    sys.exit(main())
