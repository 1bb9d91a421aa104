"""
tbd CLI - Sync command.

Exchanges issue changes with the remote through the sync branch. Never
touches the user's working tree, index or current branch.
"""

import typer
from rich.console import Console
from rich.table import Table

from tbd.cli.context import open_project
from tbd.cli.errors import fail
from tbd.core.errors import TbdError
from tbd.core.sync.models import SyncOptions, SyncStatus, SyncStatusReport
from tbd.utils.timestamps import format_timestamp

console = Console()

STATUS_ICONS = {
    SyncStatus.UP_TO_DATE: ("✓", "green", "Up to date with remote"),
    SyncStatus.AHEAD: ("↑", "yellow", "Local changes not pushed"),
    SyncStatus.BEHIND: ("↓", "yellow", "Remote changes available"),
    SyncStatus.DIVERGED: ("⚠", "yellow", "Local and remote have diverged"),
    SyncStatus.NO_REMOTE: ("○", "blue", "No remote sync branch"),
    SyncStatus.UNINITIALIZED: ("✗", "red", "Sync branch not initialized"),
}


def _print_status(report: SyncStatusReport) -> None:
    icon, color, message = STATUS_ICONS[report.status]
    console.print(f"[{color}]{icon}[/{color}] {message}")

    table = Table(show_header=False, box=None)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Branch", report.branch)
    table.add_row("Remote", report.remote)
    if report.local_tip:
        table.add_row("Local tip", report.local_tip[:8])
    if report.remote_tip:
        table.add_row("Remote tip", report.remote_tip[:8])
    if report.ahead or report.behind:
        table.add_row("Ahead / behind", f"{report.ahead} / {report.behind}")
    table.add_row("Uncommitted", str(len(report.uncommitted)))
    table.add_row(
        "Last synced",
        format_timestamp(report.last_sync_at) if report.last_sync_at else "[dim]Never[/dim]",
    )
    console.print(table)

    if report.has_local_changes or report.status is not SyncStatus.UP_TO_DATE:
        console.print("\n[dim]→ Run [bold]tbd sync[/bold] to exchange changes[/dim]")


def main(
    no_pull: bool = typer.Option(False, "--no-pull", help="Don't integrate remote changes"),
    no_push: bool = typer.Option(False, "--no-push", help="Don't push to the remote"),
    fix: bool = typer.Option(False, "--fix", help="Repair the sync worktree first if needed"),
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite the remote branch (overwritten issues are archived to the attic)",
    ),
    status: bool = typer.Option(False, "--status", help="Show sync status and exit"),
    fetch: bool = typer.Option(
        False, "--fetch", help="With --status: fetch first for an accurate remote view"
    ),
) -> None:
    """
    Sync issues with the remote.

    Commits local issue changes to the sync branch, merges remote changes
    field by field (values that lose a conflict are kept in the attic),
    and pushes, retrying if someone else pushed in between.

    Examples:
        tbd sync                   # Full sync
        tbd sync --status          # Show where the sync branch stands
        tbd sync --no-push         # Pull and commit only
        tbd sync --fix             # Repair the worktree, then sync
    """
    try:
        service = open_project().sync_service()
        if status:
            _print_status(service.status(fetch=fetch))
            return

        console.print(f"[blue]Syncing {service.branch} with {service.remote}...[/blue]")
        result = service.sync(
            SyncOptions(pull=not no_pull, push=not no_push, fix=fix, force=force)
        )
    except TbdError as e:
        raise fail(e)

    if result.repair is not None and result.repair.actions:
        console.print(f"[yellow]⚠[/yellow]  Repaired worktree: {result.repair.summary()}")
    if result.merged_entities:
        console.print(f"[green]✓[/green] Merged {result.merged_entities} issue(s)")
    if result.attic_entries:
        console.print(
            f"[yellow]⚠[/yellow]  {result.conflicts} conflicting value(s) kept in the attic "
            "(see [bold]tbd attic list[/bold])"
        )
    console.print(f"[green]✓[/green] {result.summary()}")
