"""
Command-line entry points.
"""

import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure root logging for a CLI run."""
    level = getattr(logging, log_level)

    if log_file:
        logging.basicConfig(level=level, format=LOG_FORMAT, filename=log_file, filemode='a')
    else:
        logging.basicConfig(level=level, format=LOG_FORMAT)

    # The Elasticsearch client logs every request at INFO
    if level > logging.DEBUG:
        for name in ("elasticsearch", "elastic_transport"):
            logging.getLogger(name).setLevel(logging.WARNING)


def add_logging_arguments(parser) -> None:
    """Add the shared --log-level / --log-file options."""
    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--log-file",
        help="Log to file instead of stdout"
    )
