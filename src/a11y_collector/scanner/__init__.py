"""
Accessibility scan engines.
"""

from .base import ScanEngine, ScanError, ScanOptions, ScanTimeoutError
from .pa11y import Pa11yScanner

__all__ = ['ScanEngine', 'ScanError', 'ScanOptions', 'ScanTimeoutError', 'Pa11yScanner']
