"""
Data models for the sync service.

Defines Pydantic models for sync options, results and status reports.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from tbd.core.attic.models import AtticEntry
from tbd.core.worktree.models import RepairResult


class SyncStatus(str, Enum):
    """Status of the sync branch relative to the remote."""

    UP_TO_DATE = "up_to_date"
    AHEAD = "ahead"
    BEHIND = "behind"
    DIVERGED = "diverged"
    NO_REMOTE = "no_remote"
    UNINITIALIZED = "uninitialized"


class SyncOptions(BaseModel):
    """
    What a sync may do.

    Example:
        >>> SyncOptions(push=False)  # pull and integrate only
        >>> SyncOptions(fix=True)    # repair the worktree first if needed
    """

    pull: bool = Field(default=True, description="Fetch and integrate remote changes")
    push: bool = Field(default=True, description="Push the sync branch to the remote")
    fix: bool = Field(default=False, description="Repair an unhealthy worktree first")
    force: bool = Field(
        default=False,
        description="Overwrite the remote branch, archiving every overwritten issue",
    )


class SyncResult(BaseModel):
    """
    Result of a sync operation.

    Provides detailed feedback about what happened during the sync.
    """

    success: bool = Field(default=True, description="Whether the operation succeeded")

    commits: list[str] = Field(
        default_factory=list,
        description="Commits created on the sync branch, oldest first",
    )

    pulled: bool = Field(default=False, description="Remote changes were integrated")
    pushed: bool = Field(default=False, description="The sync branch was pushed")

    merged_entities: int = Field(
        default=0,
        description="Issues changed on both sides and merged field by field",
    )

    attic_entries: list[AtticEntry] = Field(
        default_factory=list,
        description="Values discarded by merges (or by a forced push)",
    )

    attempts: int = Field(default=0, description="Push attempts made")
    local_tip: str | None = Field(default=None, description="Sync branch tip afterwards")
    remote: str | None = Field(default=None, description="Remote synced with, if any")
    repair: RepairResult | None = Field(default=None, description="Worktree repair, if run")

    message: str = Field(default="", description="Human-readable result message")

    started_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)

    @property
    def conflicts(self) -> int:
        """Number of discarded values, i.e. attic entries written."""
        return len(self.attic_entries)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def summary(self) -> str:
        """Generate a human-readable summary of the result."""
        if not self.success:
            return f"sync failed: {self.message}"

        parts = ["sync succeeded"]

        if self.commits:
            parts.append(f"{len(self.commits)} commit(s), tip {self.commits[-1][:8]}")

        if self.pulled:
            parts.append("pulled remote changes")

        if self.merged_entities:
            parts.append(f"{self.merged_entities} issue(s) merged")

        if self.attic_entries:
            parts.append(f"{self.conflicts} value(s) archived to attic")

        if self.pushed:
            parts.append(f"pushed to {self.remote}")

        if self.message:
            parts.append(self.message)

        return ", ".join(parts)


class SyncStatusReport(BaseModel):
    """Read-only view of where the sync branch stands."""

    status: SyncStatus
    branch: str
    remote: str
    local_tip: str | None = None
    remote_tip: str | None = None
    ahead: int = 0
    behind: int = 0
    uncommitted: list[str] = Field(
        default_factory=list,
        description="Worktree paths with changes not yet committed to the sync branch",
    )
    last_sync_at: datetime | None = None

    @property
    def has_local_changes(self) -> bool:
        return bool(self.uncommitted) or self.ahead > 0
