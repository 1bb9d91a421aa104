"""
Worktree health data models.
"""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field


class WorktreeStatus(str, Enum):
    """Health states of the sync worktree."""

    VALID = "valid"
    MISSING = "missing"
    PRUNABLE = "prunable"
    CORRUPTED = "corrupted"


class PathMode(str, Enum):
    """
    How ``resolve_path`` may answer when the worktree is unusable.

    Production code passes STRICT. ALLOW_FALLBACK_FOR_TESTS returns the
    non-synced ``.tbd/data-sync`` directory and exists only for tests that
    run without git.
    """

    STRICT = "strict"
    ALLOW_FALLBACK_FOR_TESTS = "allow_fallback_for_tests"


class WorktreeHealth(BaseModel):
    """Result of a side-effect-free health check."""

    status: WorktreeStatus
    path: Path
    details: str = ""
    head: str | None = Field(default=None, description="Commit checked out in the worktree")
    branch_tip: str | None = Field(default=None, description="Local sync branch tip")
    registered: bool = Field(default=False, description="Listed by 'git worktree list'")

    @property
    def is_valid(self) -> bool:
        return self.status is WorktreeStatus.VALID

    @property
    def is_stale(self) -> bool:
        """True when the checkout lags behind the sync branch tip."""
        return bool(self.head and self.branch_tip and self.head != self.branch_tip)


class RepairResult(BaseModel):
    """What ``repair()`` did."""

    previous_status: WorktreeStatus
    status: WorktreeStatus
    actions: list[str] = Field(default_factory=list)
    backup_path: Path | None = None
    created_branch: bool = False

    def summary(self) -> str:
        if not self.actions:
            return "Worktree is healthy, nothing to repair"
        text = "; ".join(self.actions)
        if self.backup_path is not None:
            text += f" (backup at {self.backup_path})"
        return text
