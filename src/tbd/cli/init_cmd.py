"""
Init command: create .tbd/config.yml and the sync worktree.
"""

import logging
from pathlib import Path

import typer
from rich.console import Console

from tbd.cli.errors import ExitCode, fail, print_error
from tbd.core.config.loader import get_config_path, init_config
from tbd.core.errors import TbdError
from tbd.core.git.client import GitClient
from tbd.core.worktree.manager import WorktreeManager

console = Console()
logger = logging.getLogger(__name__)


def main(
    prefix: str = typer.Option(
        ..., "--prefix", help="Display prefix for issue IDs (e.g. 'proj' for proj-a7k2)"
    ),
    branch: str | None = typer.Option(None, "--branch", help="Sync branch name"),
    remote: str | None = typer.Option(None, "--remote", help="Remote to sync with"),
) -> None:
    """
    Initialize tbd in the current git repository.

    Writes .tbd/config.yml (commit it) and creates the sync branch and its
    hidden worktree. If the remote already has the sync branch, it is
    checked out instead of creating a new one.

    Examples:
        tbd init --prefix proj
        tbd init --prefix proj --remote upstream
    """
    try:
        git = GitClient(Path.cwd())
    except TbdError as e:
        print_error(
            "Not a git repository",
            reason="tbd stores issues on a git branch",
            solution="git init  # or cd to your project root",
        )
        logger.debug("GitClient failed: %s", e)
        raise typer.Exit(ExitCode.USER_ERROR)

    root = git.root
    if get_config_path(root).exists():
        print_error(
            f"tbd is already initialized in {root}",
            solution="tbd doctor  # to check the sync worktree",
        )
        raise typer.Exit(ExitCode.USER_ERROR)

    try:
        config = init_config(root, prefix, branch=branch or "", remote=remote or "")
        git.timeout = config.settings.git_timeout_seconds
        manager = WorktreeManager.from_config(root, config, git)
        repair = manager.repair()
    except TbdError as e:
        raise fail(e)

    console.print(f"[green]✓[/green] Initialized tbd in {root}")
    console.print(f"  Prefix: {config.display.id_prefix}")
    console.print(f"  Sync branch: {config.sync.branch} ({repair.summary()})")
    console.print("\n[dim]→ Commit .tbd/config.yml and .tbd/.gitignore to share the setup[/dim]")
