"""
Sync worktree manager.

The sync branch is checked out in a hidden worktree at
``.tbd/data-sync-worktree/``. Every production read and write of issue
files goes through the path this manager resolves; there is no silent
fallback to an unsynced directory.

Health states and repair transitions::

    missing    -> valid   create worktree (local branch, remote branch, or new orphan)
    prunable   -> valid   git worktree prune, then create
    corrupted  -> valid   back up directory, remove, prune, then create
"""

from __future__ import annotations

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path

from tbd.core.config.loader import encode_meta, ensure_gitignore
from tbd.core.config.models import Meta, TbdConfig
from tbd.core.errors import SyncBranchError, WorktreeCorruptedError, WorktreeMissingError
from tbd.core.git.client import EMPTY_OLD_VALUE, GitClient, GitError
from tbd.core.paths import (
    ATTIC_DIR_NAME,
    BACKUPS_DIR,
    DATA_SYNC_DIR,
    IDS_TREE_PATH,
    ISSUES_DIR_NAME,
    LOCK_FILE,
    MAPPINGS_DIR_NAME,
    META_TREE_PATH,
    SYNC_BRANCH,
    WORKTREE_DIR,
    tree_path,
)
from tbd.core.worktree.lock import WorktreeLock
from tbd.core.worktree.models import PathMode, RepairResult, WorktreeHealth, WorktreeStatus

logger = logging.getLogger(__name__)

INITIAL_COMMIT_MESSAGE = "tbd: initialize sync branch"


class WorktreeManager:
    """
    Owns the sync worktree: health checks, repair and path resolution.

    Example:
        >>> manager = WorktreeManager(project_root, git=GitClient(project_root))
        >>> manager.check_health().status
        <WorktreeStatus.MISSING: 'missing'>
        >>> manager.repair().status
        <WorktreeStatus.VALID: 'valid'>
        >>> data_dir = manager.resolve_path(PathMode.STRICT)
    """

    def __init__(
        self,
        project_root: Path,
        *,
        git: GitClient | None,
        branch: str = SYNC_BRANCH,
        remote: str = "origin",
        lock: WorktreeLock | None = None,
    ) -> None:
        self.project_root = project_root
        self.git = git
        self.branch = branch
        self.remote = remote
        self.worktree_path = project_root / WORKTREE_DIR
        self.data_dir = self.worktree_path / DATA_SYNC_DIR
        self.fallback_dir = project_root / DATA_SYNC_DIR
        self.lock = lock or WorktreeLock(project_root / LOCK_FILE)

    @classmethod
    def from_config(
        cls, project_root: Path, config: TbdConfig, git: GitClient | None
    ) -> WorktreeManager:
        return cls(
            project_root,
            git=git,
            branch=config.sync.branch,
            remote=config.sync.remote,
            lock=WorktreeLock(
                project_root / LOCK_FILE,
                timeout_seconds=config.settings.lock_timeout_seconds,
                stale_timeout_seconds=config.settings.stale_lock_seconds,
            ),
        )

    @property
    def branch_ref(self) -> str:
        return f"refs/heads/{self.branch}"

    @property
    def remote_ref(self) -> str:
        return f"refs/remotes/{self.remote}/{self.branch}"

    def require_git(self) -> GitClient:
        if self.git is None:
            raise WorktreeMissingError(
                f"{self.project_root} is not a git repository, so there is no sync worktree",
                hint="Run 'git init' and then 'tbd init --prefix <name>'.",
            )
        return self.git

    # Health

    def _registry_entry(self) -> dict[str, str] | None:
        target = self.worktree_path.resolve()
        for entry in self.require_git().worktree_list():
            listed = entry.get("worktree")
            if listed and Path(listed).resolve() == target:
                return entry
        return None

    def _gitdir_pointer_problem(self) -> str | None:
        """Describe what is wrong with the worktree's .git pointer file, if anything."""
        dot_git = self.worktree_path / ".git"
        if not dot_git.exists():
            return "missing .git pointer file"
        if not dot_git.is_file():
            return ".git is a directory, not a worktree pointer"
        content = dot_git.read_text(encoding="utf-8").strip()
        if not content.startswith("gitdir:"):
            return "invalid .git pointer file"
        gitdir = Path(content[len("gitdir:") :].strip())
        if not gitdir.is_absolute():
            gitdir = (self.worktree_path / gitdir).resolve()
        if not gitdir.is_dir():
            return f".git points to missing directory {gitdir}"
        return None

    def check_health(self) -> WorktreeHealth:
        """
        Inspect the worktree without changing anything.

        Returns:
            WorktreeHealth with status valid, missing, prunable or corrupted.
        """
        if self.git is None:
            return WorktreeHealth(
                status=WorktreeStatus.MISSING,
                path=self.worktree_path,
                details="not a git repository",
            )

        entry = self._registry_entry()
        registered = entry is not None
        branch_tip = self.git.rev_parse(self.branch_ref)

        if not self.worktree_path.exists():
            if registered:
                return WorktreeHealth(
                    status=WorktreeStatus.PRUNABLE,
                    path=self.worktree_path,
                    details="registered with git but directory is gone",
                    registered=True,
                    branch_tip=branch_tip,
                )
            return WorktreeHealth(
                status=WorktreeStatus.MISSING,
                path=self.worktree_path,
                details="worktree directory does not exist",
                branch_tip=branch_tip,
            )

        problem = self._gitdir_pointer_problem()
        if problem is None and not registered:
            problem = "directory is not a registered git worktree"
        head = None
        if problem is None:
            head = self.git.rev_parse("HEAD", cwd=self.worktree_path)
            if head is None:
                problem = "HEAD does not resolve to a commit"

        if problem is not None:
            return WorktreeHealth(
                status=WorktreeStatus.CORRUPTED,
                path=self.worktree_path,
                details=problem,
                registered=registered,
                branch_tip=branch_tip,
            )

        return WorktreeHealth(
            status=WorktreeStatus.VALID,
            path=self.worktree_path,
            details="ok",
            head=head,
            branch_tip=branch_tip,
            registered=True,
        )

    # Repair

    def repair(self) -> RepairResult:
        """
        Bring the worktree to the valid state.

        A corrupted directory is copied to .tbd/backups/ before removal, so
        uncommitted issue files in it can always be recovered.

        Raises:
            SyncBranchError: If the sync branch cannot be created or fetched.
            LockTimeout: If another tbd process holds the worktree lock.
        """
        git = self.require_git()
        with self.lock:
            health = self.check_health()
            result = RepairResult(previous_status=health.status, status=health.status)
            if health.is_valid:
                self._ensure_data_dirs()
                return result

            if health.status is WorktreeStatus.CORRUPTED:
                result.backup_path = self._backup_worktree()
                shutil.rmtree(self.worktree_path)
                result.actions.append(
                    f"backed up and removed corrupted worktree ({health.details})"
                )

            git.worktree_prune()
            if health.status is not WorktreeStatus.MISSING:
                result.actions.append("pruned stale worktree registration")

            result.created_branch = self._ensure_branch()
            if result.created_branch:
                result.actions.append(f"created sync branch '{self.branch}'")

            ensure_gitignore(self.project_root)
            git.worktree_add(self.worktree_path, self.branch)
            self._ensure_data_dirs()
            result.actions.append(f"created worktree at {self.worktree_path}")

            result.status = self.check_health().status
            logger.info("Repaired sync worktree: %s", result.summary())
            return result

    def _backup_worktree(self) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        backup = self.project_root / BACKUPS_DIR / f"{stamp}-{self.worktree_path.name}"
        backup.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(self.worktree_path, backup, symlinks=True)
        logger.info("Backed up corrupted worktree to %s", backup)
        return backup

    def _ensure_data_dirs(self) -> None:
        for name in (ISSUES_DIR_NAME, MAPPINGS_DIR_NAME, ATTIC_DIR_NAME):
            (self.data_dir / name).mkdir(parents=True, exist_ok=True)

    def _ensure_branch(self) -> bool:
        """
        Make sure the local sync branch exists.

        Returns:
            True if a brand-new orphan branch was created.
        """
        git = self.require_git()
        if git.ref_exists(self.branch_ref):
            return False

        if git.has_remote(self.remote):
            try:
                remote_tip = git.fetch(self.remote, self.branch)
            except GitError as e:
                raise SyncBranchError(
                    f"Could not fetch '{self.branch}' from '{self.remote}': {e}",
                    hint="Check your network and remote, then run 'tbd doctor --fix'.",
                ) from e
            if remote_tip is not None:
                git.update_ref(self.branch_ref, remote_tip, EMPTY_OLD_VALUE)
                logger.info("Created local '%s' from %s", self.branch, self.remote_ref)
                return False

        self._create_orphan_branch()
        return True

    def _create_orphan_branch(self) -> str:
        """
        Create the sync branch as a root commit holding an empty dataset.

        Built with plumbing through a throwaway index so neither the user's
        index nor HEAD is touched.
        """
        git = self.require_git()
        index = git.common_dir / "tbd-init-index"
        index.unlink(missing_ok=True)
        files = {
            META_TREE_PATH: encode_meta(Meta()),
            IDS_TREE_PATH: "{}\n",
            tree_path(ISSUES_DIR_NAME, ".gitkeep"): "",
            tree_path(ATTIC_DIR_NAME, ".gitkeep"): "",
        }
        try:
            for path, content in files.items():
                sha = git.hash_object(content)
                git.update_index_cacheinfo(index, "100644", sha, path)
            tree = git.write_tree(index)
            commit = git.commit_tree(tree, INITIAL_COMMIT_MESSAGE, [])
            git.update_ref(self.branch_ref, commit, EMPTY_OLD_VALUE)
        except GitError as e:
            raise SyncBranchError(f"Could not create sync branch '{self.branch}': {e}") from e
        finally:
            index.unlink(missing_ok=True)

        logger.info("Created orphan sync branch '%s' at %s", self.branch, commit[:8])
        return commit

    # Path resolution

    def resolve_path(self, mode: PathMode, *, repair: bool = False) -> Path:
        """
        Return the data directory issue files must be read from and written to.

        Args:
            mode: PathMode.STRICT in production. Only tests without git pass
                ALLOW_FALLBACK_FOR_TESTS.
            repair: Repair an unhealthy worktree instead of failing.

        Raises:
            WorktreeMissingError: If the worktree is missing or prunable.
            WorktreeCorruptedError: If the worktree is corrupted.
        """
        health = self.check_health()
        if health.is_valid:
            self._ensure_data_dirs()
            return self.data_dir

        if repair:
            self.repair()
            return self.data_dir

        if mode is PathMode.ALLOW_FALLBACK_FOR_TESTS:
            logger.warning("Using unsynced fallback data directory %s", self.fallback_dir)
            self.fallback_dir.mkdir(parents=True, exist_ok=True)
            return self.fallback_dir

        raise self.health_error(health)

    def health_error(self, health: WorktreeHealth) -> Exception:
        """The typed error describing an unhealthy worktree."""
        if health.status is WorktreeStatus.CORRUPTED:
            return WorktreeCorruptedError(
                f"Sync worktree at {health.path} is corrupted: {health.details}"
            )
        return WorktreeMissingError(
            f"Sync worktree at {health.path} is {health.status.value}: {health.details}"
        )
