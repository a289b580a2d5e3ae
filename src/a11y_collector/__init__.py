"""
a11y-collector: distributed accessibility scanning of a shared URL catalog.
"""

from .config import Config, ConfigurationError

__version__ = "1.0.0"

__all__ = ['Config', 'ConfigurationError', '__version__']
