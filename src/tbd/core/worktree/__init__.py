"""
Sync worktree management.

This module provides the WorktreeManager that owns the hidden checkout of
the sync branch, its health state machine and its repair.
"""

from tbd.core.worktree.lock import WorktreeLock
from tbd.core.worktree.manager import WorktreeManager
from tbd.core.worktree.models import PathMode, RepairResult, WorktreeHealth, WorktreeStatus

__all__ = [
    "PathMode",
    "RepairResult",
    "WorktreeHealth",
    "WorktreeLock",
    "WorktreeManager",
    "WorktreeStatus",
]
