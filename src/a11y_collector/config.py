"""
Configuration loading for the collector.

Settings come from a YAML file (default ``./config.yaml``, or the path in
``A11Y_COLLECTOR_CONFIG_PATH``). A ``.env`` file is loaded first, string
values may reference environment variables as ``${VAR}`` or
``${VAR:-default}``, and the ``ES_HOST`` / ``ES_URL_INDEX`` / ``ES_INDEX``
variables fill in storage settings the file leaves out.
"""

import copy
import logging
import os
import re
import socket
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from .scanner.base import ScanOptions
from .scanner.pa11y import Pa11yScanner
from .storage.elastic_search import ElasticsearchWorkItemStore

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "A11Y_COLLECTOR_CONFIG_PATH"

ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

DEFAULT_CONFIG: Dict[str, Any] = {
    'storage': {
        'backend': 'elasticsearch',
        'hosts': ['http://localhost:9200'],
        'url_index': None,
        'record_index': None,
        'verify_certs': True,
        'request_timeout': 30
    },
    'collector': {
        'instance_token': None,
        'concurrency': 2,
        'claim_batch_size': 2,
        'claim_high_water': 25,
        'reappear_limit': 30,
        'inflight_expiry_seconds': 120,
        'stale_after_seconds': 300,
        'claim_interval_seconds': 1.0,
        'dispatch_interval_seconds': 0.5,
        'health_interval_seconds': 60,
        'rescan_after_seconds': 86400,
        'refill_threshold': 2,
        'shutdown_grace_seconds': 30,
        'flagged_domains': []
    },
    'scanner': {
        'command': ['pa11y'],
        'standard': 'WCAG2AA',
        'timeout_ms': 10000,
        'wait_ms': 10,
        'viewport': {'width': 1366, 'height': 768},
        'user_agent': 'WSU Accessibility Crawler: web.wsu.edu/crawler/',
        'process_grace_seconds': 30
    }
}

# Environment variables used by earlier deployments of the collector
LEGACY_ENV = {
    'ES_HOST': 'hosts',
    'ES_URL_INDEX': 'url_index',
    'ES_INDEX': 'record_index'
}


class ConfigurationError(Exception):
    """Raised when required settings are missing or invalid."""


def default_instance_token() -> str:
    """Claim token unique to this process."""
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:8]}"


def expand_env(value: Any) -> Any:
    """Recursively expand ``${VAR}`` placeholders in configuration values."""
    if isinstance(value, str):
        return ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), m.group(2) or ''), value)
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


def merge_config(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-merge ``override`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


@dataclass
class CollectorSettings:
    """Scheduling parameters of one collector instance."""
    instance_token: str
    concurrency: int = 2
    claim_batch_size: int = 2
    claim_high_water: int = 25
    reappear_limit: int = 30
    inflight_expiry_seconds: float = 120
    stale_after_seconds: float = 300
    claim_interval_seconds: float = 1.0
    dispatch_interval_seconds: float = 0.5
    health_interval_seconds: float = 60
    rescan_after_seconds: float = 86400
    refill_threshold: int = 2
    shutdown_grace_seconds: float = 30
    flagged_domains: List[str] = field(default_factory=list)

    def validate(self) -> None:
        """
        Check settings for values the scheduler cannot work with.

        Raises:
            ConfigurationError: On the first invalid value
        """
        positive = ['concurrency', 'claim_batch_size', 'claim_high_water', 'reappear_limit',
                    'inflight_expiry_seconds', 'stale_after_seconds', 'claim_interval_seconds',
                    'dispatch_interval_seconds', 'health_interval_seconds', 'rescan_after_seconds']
        for name in positive:
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"collector.{name} must be greater than zero")

        if self.refill_threshold < 1:
            raise ConfigurationError("collector.refill_threshold must be at least 1")

        if not self.instance_token:
            raise ConfigurationError("collector.instance_token must not be empty")


class Config:
    """Collector configuration."""

    def __init__(self, config_path: Optional[str] = None, load_env: bool = True):
        """
        Load configuration.

        Args:
            config_path: Path to YAML file (default: $A11Y_COLLECTOR_CONFIG_PATH or ./config.yaml)
            load_env: Load a .env file before reading the environment
        """
        if load_env:
            load_dotenv()

        self.config_path = config_path or os.environ.get(CONFIG_PATH_ENV, "./config.yaml")
        self.config = self._load()

    def _load(self) -> Dict[str, Any]:
        path = Path(self.config_path)
        file_config: Dict[str, Any] = {}

        if path.exists():
            try:
                with open(path, 'r') as f:
                    file_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {path}: {str(e)}") from e
            logger.debug(f"Loaded configuration from {path}")
        else:
            logger.info(f"Configuration file {path} not found, using defaults and environment")

        if not isinstance(file_config, dict):
            raise ConfigurationError(f"Configuration in {path} must be a mapping")

        config = merge_config(DEFAULT_CONFIG, expand_env(file_config))

        storage = config['storage']
        file_storage = file_config.get('storage') or {}
        for env_name, key in LEGACY_ENV.items():
            env_value = os.environ.get(env_name)
            if env_value and not file_storage.get(key):
                storage[key] = env_value

        if isinstance(storage.get('hosts'), str):
            storage['hosts'] = [h.strip() for h in storage['hosts'].split(',') if h.strip()]

        return config

    def get_storage_config(self) -> Dict[str, Any]:
        """
        Storage connection parameters.

        Raises:
            ConfigurationError: If an index name is missing
        """
        storage = dict(self.config['storage'])

        if storage.get('backend', 'elasticsearch') != 'elasticsearch':
            raise ConfigurationError(f"Unsupported storage backend: {storage['backend']}")

        if not storage.get('url_index'):
            raise ConfigurationError("No Elasticsearch URL index (storage.url_index / ES_URL_INDEX) defined.")
        if not storage.get('record_index'):
            raise ConfigurationError("No Elasticsearch Accessibility record index (storage.record_index / ES_INDEX) defined.")
        if not storage.get('hosts'):
            raise ConfigurationError("No Elasticsearch host instance (storage.hosts / ES_HOST) defined.")

        return storage

    def get_collector_settings(self) -> CollectorSettings:
        """Typed, validated collector settings."""
        collector = dict(self.config['collector'])
        collector['instance_token'] = collector.get('instance_token') or default_instance_token()
        collector['flagged_domains'] = list(collector.get('flagged_domains') or [])

        known = CollectorSettings.__dataclass_fields__
        unknown = set(collector) - set(known)
        if unknown:
            logger.warning(f"Ignoring unknown collector settings: {', '.join(sorted(unknown))}")

        try:
            settings = CollectorSettings(**{k: v for k, v in collector.items() if k in known})
        except TypeError as e:
            raise ConfigurationError(f"Invalid collector settings: {str(e)}") from e

        settings.validate()
        return settings

    def get_scan_options(self) -> ScanOptions:
        """Options passed to the scan engine."""
        scanner = self.config['scanner']
        viewport = scanner.get('viewport') or {}

        return ScanOptions(
            standard=scanner.get('standard', 'WCAG2AA'),
            timeout_ms=int(scanner.get('timeout_ms', 10000)),
            wait_ms=int(scanner.get('wait_ms', 10)),
            viewport_width=int(viewport.get('width', 1366)),
            viewport_height=int(viewport.get('height', 768)),
            user_agent=scanner.get('user_agent', '')
        )

    def get_work_item_store(self) -> ElasticsearchWorkItemStore:
        """Create the configured work item store (not yet initialized)."""
        return ElasticsearchWorkItemStore(self.get_storage_config())

    def get_scanner(self) -> Pa11yScanner:
        """Create the configured scan engine."""
        scanner = self.config['scanner']
        command = scanner.get('command') or ['pa11y']
        if isinstance(command, str):
            command = command.split()

        return Pa11yScanner(command=command, process_grace_seconds=float(scanner.get('process_grace_seconds', 30)))
