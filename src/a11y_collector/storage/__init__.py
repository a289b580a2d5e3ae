"""
Work Item Store backends.
"""

from .base import WorkItemStore, StoreError
from .models import WorkItem

__all__ = ['WorkItemStore', 'StoreError', 'WorkItem']
