"""
Scan engine interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List


class ScanError(Exception):
    """The engine could not produce results for a URL."""


class ScanTimeoutError(ScanError):
    """The engine gave up on a URL after its timeout."""


@dataclass
class ScanOptions:
    """Options passed to the engine for every scan."""
    standard: str = "WCAG2AA"
    timeout_ms: int = 10000
    wait_ms: int = 10
    viewport_width: int = 1366
    viewport_height: int = 768
    user_agent: str = "WSU Accessibility Crawler: web.wsu.edu/crawler/"


class ScanEngine(ABC):
    """Given a URL, returns a list of accessibility issues or raises ScanError."""

    @abstractmethod
    async def scan(self, url: str, options: ScanOptions) -> List[Dict[str, Any]]:
        """
        Scan a single URL.

        Args:
            url: URL to scan
            options: Engine options

        Returns:
            Issues found, as engine-defined dictionaries

        Raises:
            ScanError: If the scan failed (navigation error, timeout, bad output)
        """
        pass
