"""
Git-based synchronization of the issue store.

This module provides the SyncService that commits local issue changes to
the sync branch, integrates remote changes through the merge engine, and
pushes with bounded retries.
"""

from tbd.core.sync.models import SyncOptions, SyncResult, SyncStatus, SyncStatusReport
from tbd.core.sync.service import SyncService

__all__ = [
    "SyncOptions",
    "SyncResult",
    "SyncService",
    "SyncStatus",
    "SyncStatusReport",
]
