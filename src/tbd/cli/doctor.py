"""
tbd CLI - Doctor command.

Checks the sync worktree and optionally repairs it.
"""

import typer
from rich.console import Console

from tbd.cli.context import open_project
from tbd.cli.errors import ExitCode, fail
from tbd.core.errors import TbdError
from tbd.core.worktree.models import WorktreeStatus

console = Console()


def main(
    fix: bool = typer.Option(False, "--fix", help="Repair problems that are found"),
) -> None:
    """
    Diagnose the sync worktree.

    A corrupted worktree is backed up to .tbd/backups/ before being
    recreated, so no uncommitted issue file is lost.

    Examples:
        tbd doctor          # Report worktree health
        tbd doctor --fix    # Repair it
    """
    try:
        project = open_project()
        health = project.manager.check_health()

        if health.is_valid:
            console.print(f"[green]✓[/green] Sync worktree is healthy ({health.path})")
            if health.is_stale:
                console.print(
                    "[yellow]⚠[/yellow]  Worktree is behind the sync branch; "
                    "the next [bold]tbd sync[/bold] refreshes it"
                )
            return

        color = "red" if health.status is WorktreeStatus.CORRUPTED else "yellow"
        console.print(
            f"[{color}]✗[/{color}] Sync worktree is {health.status.value}: {health.details}"
        )
        if not fix:
            console.print("\n[dim]→ Run [bold]tbd doctor --fix[/bold] to repair[/dim]")
            raise typer.Exit(ExitCode.GENERAL_ERROR)

        result = project.manager.repair()
    except TbdError as e:
        raise fail(e)

    console.print(f"[green]✓[/green] {result.summary()}")
