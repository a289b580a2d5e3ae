#!/usr/bin/env python3
"""
Command-line interface for running a collector instance.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .. import Config, ConfigurationError
from ..storage.base import StoreError
from ..work_queue.worker import CollectorWorker
from . import add_logging_arguments, configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Accessibility collector: claims URLs from the shared catalog and scans them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run a collector with default config
  a11y-collector

  # Run with a custom config file
  a11y-collector --config /path/to/config.yaml

  # Run with three scan slots and a fixed claim token
  a11y-collector --concurrency 3 --instance-token collector-prod-01

Environment Variables:
  A11Y_COLLECTOR_CONFIG_PATH: Path to configuration file (default: ./config.yaml)
  ES_HOST, ES_URL_INDEX, ES_INDEX: Storage settings used when the file omits them
        """
    )

    parser.add_argument(
        "--config", "-c",
        help="Path to configuration file (overrides A11Y_COLLECTOR_CONFIG_PATH)"
    )

    parser.add_argument(
        "--concurrency", "-n",
        type=int,
        help="Number of concurrent scan slots (overrides config)"
    )

    parser.add_argument(
        "--instance-token",
        help="Claim token for this instance (auto-generated if not provided)"
    )

    add_logging_arguments(parser)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the collector."""
    args = build_parser().parse_args(argv)

    configure_logging(args.log_level, args.log_file)
    logger = logging.getLogger(__name__)

    try:
        config = Config(args.config)

        if args.concurrency is not None:
            config.config['collector']['concurrency'] = args.concurrency
        if args.instance_token:
            config.config['collector']['instance_token'] = args.instance_token

        settings = config.get_collector_settings()

        logger.info("Starting accessibility collector")
        logger.info(f"Config file: {config.config_path}")
        logger.info(f"Instance token: {settings.instance_token}")
        logger.info(f"Scan slots: {settings.concurrency}")

        worker = CollectorWorker(
            settings,
            config.get_work_item_store(),
            config.get_scanner(),
            options=config.get_scan_options()
        )

        stats = asyncio.run(worker.run())

        logger.info("Collector statistics:")
        logger.info(f"  Scans completed: {stats.get('scans_completed', 0)}")
        logger.info(f"  Scans failed: {stats.get('scan_errors', 0)}")
        logger.info(f"  Scans abandoned: {stats.get('scans_abandoned', 0)}")
        logger.info(f"  Records written: {stats.get('records_written', 0)}")
        logger.info(f"  URLs claimed: {stats.get('claims', 0)}")
        logger.info(f"  URLs tombstoned: {stats.get('tombstoned', 0)}")
        logger.info(f"  Health resets: {stats.get('health_resets', 0)}")

        if stats.get('start_time') and stats.get('end_time'):
            runtime = stats['end_time'] - stats['start_time']
            logger.info(f"  Runtime: {runtime:.1f} seconds")

        return 0

    except ConfigurationError as e:
        logger.error(f"Configuration error: {str(e)}")
        return 1

    except StoreError as e:
        logger.error(f"Store unavailable: {str(e)}")
        return 1

    except KeyboardInterrupt:
        logger.info("Collector shutdown requested by user")
        return 1


if __name__ == "__main__":
    sys.exit(main())
