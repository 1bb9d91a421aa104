"""
Pytest configuration and shared fixtures.

Sync tests run against real git: a bare repository stands in for the
shared remote and each "machine" is a separate clone with its own sync
worktree.
"""

from __future__ import annotations

import subprocess
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from tbd.core.config.loader import clear_cache, init_config
from tbd.core.config.models import TbdConfig
from tbd.core.git.client import GitClient
from tbd.core.issues.service import IssueService
from tbd.core.sync.service import SyncService
from tbd.core.worktree.manager import WorktreeManager
from tbd.core.worktree.models import PathMode


def run_git(args: list[str], cwd: Path) -> str:
    """Run git in ``cwd`` and return stripped stdout."""
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True
    )
    return result.stdout.strip()


class SteppingClock:
    """Deterministic clock: every call returns a time one step after the last."""

    def __init__(
        self,
        start: datetime = datetime(2025, 1, 7, 10, 0, 0, tzinfo=timezone.utc),
        step: timedelta = timedelta(seconds=1),
    ) -> None:
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + self.step
        return value


@dataclass
class Machine:
    """One clone of the project, as a developer's machine sees it."""

    root: Path
    config: TbdConfig
    git: GitClient
    manager: WorktreeManager
    clock: SteppingClock

    @property
    def data_dir(self) -> Path:
        return self.manager.resolve_path(PathMode.STRICT)

    def issues(self) -> IssueService:
        prefix = self.config.display.id_prefix
        return IssueService(self.data_dir, id_prefix=prefix, clock=self.clock)

    def sync_service(self, **kwargs: object) -> SyncService:
        return SyncService(self.manager, clock=self.clock, **kwargs)  # type: ignore[arg-type]


@pytest.fixture(autouse=True)
def git_identity(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Give git an identity and keep TBD_* overrides out of every test."""
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test User")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test User")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    for name in ("TBD_SYNC_BRANCH", "TBD_SYNC_REMOTE", "TBD_GIT_TIMEOUT", "TBD_PUSH_RETRIES"):
        monkeypatch.delenv(name, raising=False)
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def make_repo(tmp_path: Path) -> Callable[[str], Path]:
    """Factory for git repositories with one commit on the main branch."""

    def _make(name: str) -> Path:
        repo = tmp_path / name
        repo.mkdir()
        run_git(["init", "--quiet"], repo)
        run_git(["config", "user.email", "test@example.com"], repo)
        run_git(["config", "user.name", "Test User"], repo)
        (repo / "README.md").write_text("# Test Repo\n")
        run_git(["add", "README.md"], repo)
        run_git(["commit", "--quiet", "-m", "Initial commit"], repo)
        return repo

    return _make


@pytest.fixture
def git_repo(make_repo: Callable[[str], Path]) -> Path:
    """A git repository without tbd."""
    return make_repo("repo")


@pytest.fixture
def remote_repo(tmp_path: Path) -> Path:
    """A bare repository acting as the shared remote."""
    remote = tmp_path / "remote.git"
    remote.mkdir()
    run_git(["init", "--quiet", "--bare"], remote)
    return remote


@pytest.fixture
def make_machine(
    make_repo: Callable[[str], Path], clock: SteppingClock
) -> Callable[..., Machine]:
    """
    Factory for initialized tbd projects.

    Machines created with the same ``remote`` share the sync branch through
    it. All machines share one clock, so edits made later in a test are
    always newer.
    """

    def _make(name: str, remote: Path | None = None, prefix: str = "proj") -> Machine:
        root = make_repo(name)
        if remote is not None:
            run_git(["remote", "add", "origin", str(remote)], root)
        config = init_config(root, prefix)
        git = GitClient(root, timeout=config.settings.git_timeout_seconds)
        manager = WorktreeManager.from_config(root, config, git)
        manager.repair()
        return Machine(root=root, config=config, git=git, manager=manager, clock=clock)

    return _make


@pytest.fixture
def machine(make_machine: Callable[..., Machine]) -> Machine:
    """A single initialized project without a remote."""
    return make_machine("local")


@pytest.fixture
def machines(
    make_machine: Callable[..., Machine], remote_repo: Path
) -> tuple[Machine, Machine]:
    """
    Two machines sharing a remote.

    The first one publishes the sync branch; the second picks it up from
    the remote when it initializes.
    """
    first = make_machine("alice", remote_repo)
    first.sync_service().sync()
    second = make_machine("bob", remote_repo)
    return first, second


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """A plain data directory for tests that don't need git."""
    path = tmp_path / "data"
    for name in ("issues", "mappings", "attic"):
        (path / name).mkdir(parents=True)
    return path


@pytest.fixture
def git() -> Callable[[list[str], Path], str]:
    """Run a git command in a directory and return its stripped stdout."""
    return run_git
