"""
Project context shared by CLI commands.

Every command that touches issues goes through ``open_project``, which
resolves the data directory strictly through the sync worktree.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from tbd.core.config.loader import find_project_root, load_config
from tbd.core.config.models import TbdConfig
from tbd.core.git.client import GitClient
from tbd.core.issues.service import IssueService
from tbd.core.sync.service import SyncService
from tbd.core.worktree.manager import WorktreeManager
from tbd.core.worktree.models import PathMode


@dataclass
class Project:
    root: Path
    config: TbdConfig
    git: GitClient
    manager: WorktreeManager

    def issues(self) -> IssueService:
        """IssueService over the sync worktree; fails if it is unhealthy."""
        data_dir = self.manager.resolve_path(PathMode.STRICT)
        return IssueService(data_dir, id_prefix=self.config.display.id_prefix)

    def sync_service(self) -> SyncService:
        return SyncService(self.manager, push_retries=self.config.settings.push_retries)


def open_project(start: Path | None = None) -> Project:
    """
    Locate and load the tbd project containing ``start`` (default: cwd).

    Raises:
        NotInitializedError: If there is no .tbd/config.yml above ``start``.
        GitError: If the project is not inside a git repository.
    """
    root = find_project_root(start)
    config = load_config(root)
    git = GitClient(root, timeout=config.settings.git_timeout_seconds)
    return Project(
        root=root,
        config=config,
        git=git,
        manager=WorktreeManager.from_config(root, config, git),
    )
