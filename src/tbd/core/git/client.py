"""
Git client.

Every git subprocess tbd runs goes through ``GitClient.run``: one place
that applies the timeout, the isolated index override and error mapping.
Repository discovery uses GitPython; the commands themselves are plain
``git`` invocations so that plumbing (hash-object, commit-tree, update-ref)
behaves exactly as on the command line.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from git import InvalidGitRepositoryError, NoSuchPathError, Repo

from tbd.core.errors import TbdError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60

# stderr fragments that mean the push was rejected because the remote moved
PUSH_REJECTION_MARKERS = ("non-fast-forward", "fetch first", "rejected", "stale info")

# stderr fragments that mean the remote branch does not exist yet
MISSING_REMOTE_REF_MARKERS = ("couldn't find remote ref", "could not find remote ref")

EMPTY_OLD_VALUE = ""


class GitError(TbdError):
    """Exception raised when a git operation fails."""

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        stderr: str = "",
        returncode: int | None = None,
        timed_out: bool = False,
    ) -> None:
        self.command = command
        self.stderr = stderr
        self.returncode = returncode
        self.timed_out = timed_out
        detail = f"{message}: {stderr}" if stderr else message
        super().__init__(detail)

    @property
    def is_push_rejection(self) -> bool:
        lowered = self.stderr.lower()
        return any(marker in lowered for marker in PUSH_REJECTION_MARKERS)

    @property
    def is_missing_remote_ref(self) -> bool:
        lowered = self.stderr.lower()
        return any(marker in lowered for marker in MISSING_REMOTE_REF_MARKERS)


@dataclass
class TreeEntry:
    """One blob from ``git ls-tree -r``."""

    mode: str
    sha: str
    path: str


class GitClient:
    """
    Thin wrapper over the git binary for one repository.

    Example:
        >>> git = GitClient(Path("."))
        >>> git.rev_parse("HEAD")
        '3f1c...'
    """

    def __init__(self, repo_path: Path, *, timeout: int = DEFAULT_TIMEOUT_SECONDS) -> None:
        try:
            repo = Repo(repo_path, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise GitError(f"Not a git repository: {repo_path}") from e

        if repo.working_tree_dir is None:
            raise GitError(f"Bare repositories are not supported: {repo_path}")

        self.repo = repo
        self.root = Path(repo.working_tree_dir)
        self.git_dir = Path(repo.git_dir)
        self.common_dir = Path(repo.common_dir)
        self.timeout = timeout

    @property
    def isolated_index_path(self) -> Path:
        """Index file used for sync-branch commits, never the user's index."""
        return self.common_dir / "tbd-sync-index"

    def run(
        self,
        args: list[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        input_data: str | None = None,
        index_file: Path | None = None,
        strip: bool = True,
    ) -> str:
        """
        Run a git command and return its stdout.

        Args:
            args: Git command arguments (without "git" prefix).
            cwd: Directory to run in (defaults to the repository root).
            check: Whether to raise on non-zero exit code.
            input_data: Optional stdin data to pass to the command.
            index_file: Use this index instead of the checkout's own.
            strip: Strip surrounding whitespace from stdout.

        Raises:
            GitError: If the command fails (and check=True) or times out.
        """
        return self._run(
            args, cwd=cwd, check=check, input_data=input_data, index_file=index_file, strip=strip
        ).stdout

    def succeeds(self, args: list[str], *, cwd: Path | None = None) -> bool:
        """True if the command exits 0. Timeouts still raise."""
        return self._run(args, cwd=cwd, check=False).returncode == 0

    def _run(
        self,
        args: list[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        input_data: str | None = None,
        index_file: Path | None = None,
        strip: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        cmd = ["git"] + args
        env = None
        if index_file is not None:
            env = {**os.environ, "GIT_INDEX_FILE": str(index_file)}

        logger.debug("Running git command: %s", " ".join(cmd))

        try:
            result = subprocess.run(
                cmd,
                cwd=cwd or self.root,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                input=input_data,
                env=env,
            )
        except subprocess.TimeoutExpired as e:
            raise GitError(
                f"Git command timed out after {self.timeout}s: {' '.join(cmd)}",
                command=cmd,
                timed_out=True,
            ) from e
        except FileNotFoundError as e:
            raise GitError("git not found in PATH", command=cmd) from e

        stderr = result.stderr.strip() if result.stderr else ""
        if check and result.returncode != 0:
            raise GitError(
                f"Git command failed: {' '.join(cmd)}",
                command=cmd,
                stderr=stderr,
                returncode=result.returncode,
            )

        stdout = result.stdout or ""
        return subprocess.CompletedProcess(
            cmd, result.returncode, stdout.strip() if strip else stdout, stderr
        )

    # Refs and history

    def rev_parse(self, ref: str, *, cwd: Path | None = None) -> str | None:
        """Resolve a ref to a commit SHA, or None if it doesn't exist."""
        result = self._run(
            ["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], cwd=cwd, check=False
        )
        if result.returncode != 0 or not result.stdout:
            return None
        return result.stdout

    def ref_exists(self, ref: str) -> bool:
        return self.rev_parse(ref) is not None

    def merge_base(self, a: str, b: str) -> str | None:
        result = self._run(["merge-base", a, b], check=False)
        if result.returncode != 0 or not result.stdout:
            return None
        return result.stdout

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        return self.succeeds(["merge-base", "--is-ancestor", ancestor, descendant])

    def ahead_behind(self, local: str, remote: str) -> tuple[int, int]:
        output = self.run(["rev-list", "--left-right", "--count", f"{local}...{remote}"])
        ahead, behind = output.split()
        return int(ahead), int(behind)

    def update_ref(self, ref: str, new_value: str, old_value: str | None = None) -> None:
        """
        Point ``ref`` at ``new_value``. If ``old_value`` is given the update
        only happens when the ref currently has that value ("" = must not exist).
        """
        args = ["update-ref", ref, new_value]
        if old_value is not None:
            args.append(old_value)
        self.run(args)

    # Remotes

    def has_remote(self, remote: str) -> bool:
        return self.succeeds(["remote", "get-url", remote])

    def fetch(self, remote: str, branch: str) -> str | None:
        """
        Fetch ``branch`` from ``remote`` into ``refs/remotes/<remote>/<branch>``.

        Returns:
            The fetched tip SHA, or None if the remote has no such branch.
        """
        tracking = f"refs/remotes/{remote}/{branch}"
        try:
            self.run(["fetch", "--no-tags", remote, f"+refs/heads/{branch}:{tracking}"])
        except GitError as e:
            if e.is_missing_remote_ref:
                logger.debug("Remote %s has no branch %s yet", remote, branch)
                return None
            raise
        return self.rev_parse(tracking)

    def push(
        self, remote: str, branch: str, *, force_with_lease: str | None = None
    ) -> None:
        """
        Push the local branch to the same name on ``remote``.

        Args:
            force_with_lease: Expected remote SHA; the push overwrites the
                remote branch only if it still points there.

        Raises:
            GitError: On failure; check ``is_push_rejection`` for a
                non-fast-forward rejection.
        """
        args = ["push", remote]
        if force_with_lease is not None:
            args.insert(1, f"--force-with-lease=refs/heads/{branch}:{force_with_lease}")
        args.append(f"refs/heads/{branch}:refs/heads/{branch}")
        self.run(args)
        logger.debug("Pushed %s to %s", branch, remote)

    # Objects and trees

    def show(self, rev: str, path: str) -> str | None:
        """File content at ``rev:path``, or None if absent."""
        result = self._run(["show", f"{rev}:{path}"], check=False, strip=False)
        return result.stdout if result.returncode == 0 else None

    def cat_blob(self, sha: str) -> str:
        return self.run(["cat-file", "blob", sha], strip=False)

    def ls_tree(self, rev: str, path: str | None = None) -> dict[str, TreeEntry]:
        """All blobs under ``path`` in ``rev``, keyed by path."""
        args = ["ls-tree", "-r", "-z", rev]
        if path:
            args.extend(["--", path])
        output = self.run(args, strip=False)
        entries: dict[str, TreeEntry] = {}
        for record in output.split("\0"):
            if not record:
                continue
            meta, _, file_path = record.partition("\t")
            mode, obj_type, sha = meta.split()
            if obj_type == "blob":
                entries[file_path] = TreeEntry(mode=mode, sha=sha, path=file_path)
        return entries

    def hash_object(self, content: str) -> str:
        return self.run(["hash-object", "-w", "--stdin"], input_data=content)

    def update_index_cacheinfo(self, index_file: Path, mode: str, sha: str, path: str) -> None:
        self.run(
            ["update-index", "--add", "--cacheinfo", f"{mode},{sha},{path}"],
            index_file=index_file,
        )

    def read_tree(self, rev: str, index_file: Path, *, cwd: Path | None = None) -> None:
        self.run(["read-tree", rev], index_file=index_file, cwd=cwd)

    def add_all(self, index_file: Path, cwd: Path, pathspec: str = ".") -> None:
        self.run(["add", "-A", "--", pathspec], index_file=index_file, cwd=cwd)

    def write_tree(self, index_file: Path, *, cwd: Path | None = None) -> str:
        return self.run(["write-tree"], index_file=index_file, cwd=cwd)

    def tree_of(self, commit: str) -> str:
        return self.run(["rev-parse", f"{commit}^{{tree}}"])

    def commit_tree(self, tree: str, message: str, parents: list[str]) -> str:
        args = ["commit-tree", tree]
        for parent in parents:
            args.extend(["-p", parent])
        return self.run(args + ["-m", message])

    def diff_tree_names(self, old: str, new: str) -> list[str]:
        output = self.run(["diff-tree", "-r", "--name-only", "-z", old, new], strip=False)
        return [name for name in output.split("\0") if name]

    # Worktrees

    def worktree_add(self, path: Path, branch: str) -> None:
        self.run(["worktree", "add", str(path), branch])

    def worktree_prune(self) -> None:
        self.run(["worktree", "prune"])

    def worktree_list(self) -> list[dict[str, str]]:
        """Parse ``git worktree list --porcelain`` into one dict per entry."""
        output = self.run(["worktree", "list", "--porcelain"])
        entries: list[dict[str, str]] = []
        current: dict[str, str] = {}
        for line in output.splitlines():
            line = line.strip()
            if not line:
                if current:
                    entries.append(current)
                    current = {}
                continue
            key, _, value = line.partition(" ")
            current[key] = value if value else "true"
        if current:
            entries.append(current)
        return entries

    def reset_hard(self, cwd: Path, rev: str = "HEAD") -> None:
        self.run(["reset", "--hard", "--quiet", rev], cwd=cwd)

    def status_porcelain(self, cwd: Path) -> list[str]:
        output = self.run(
            ["status", "--porcelain", "--untracked-files=all"], cwd=cwd, strip=False
        )
        return [line for line in output.splitlines() if line]
