"""
tbd CLI - Attic commands.

The attic keeps every value a merge discarded. ``list`` and ``show``
inspect it; ``restore`` writes an archived value back as a new edit.
"""

import json

import typer
import yaml
from rich.console import Console
from rich.table import Table

from tbd.cli.context import open_project
from tbd.cli.errors import ExitCode, fail, print_error
from tbd.core.attic.models import format_attic_timestamp
from tbd.core.errors import TbdError
from tbd.utils.timestamps import parse_timestamp

console = Console()
app = typer.Typer(
    name="attic",
    help="Inspect and restore values discarded by merges",
    no_args_is_help=True,
)


def _preview(value: object, width: int = 60) -> str:
    text = json.dumps(value, default=str) if not isinstance(value, str) else value
    text = text.replace("\n", " ")
    return text if len(text) <= width else text[: width - 1] + "…"


@app.command(name="list")
def list_entries(
    issue_id: str | None = typer.Argument(None, help="Only entries for this issue"),
    field: str | None = typer.Option(None, "--field", "-f", help="Only this field"),
    since: str | None = typer.Option(None, "--since", help="Only entries after (ISO-8601)"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """
    List attic entries, oldest first.

    Examples:
        tbd attic list
        tbd attic list proj-a7k2 --field description
    """
    try:
        since_at = parse_timestamp(since) if since else None
    except ValueError:
        print_error(f"Invalid date for --since: {since}", solution="Use ISO-8601, e.g. 2025-03-01")
        raise typer.Exit(ExitCode.USER_ERROR)

    try:
        service = open_project().issues()
        entries = service.list_attic(issue_id, field=field, since=since_at)
    except TbdError as e:
        raise fail(e)

    if json_output:
        console.print_json(json.dumps([entry.to_dict() for entry in entries]))
        return

    if not entries:
        console.print("[dim]Attic is empty[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Issue", style="cyan", no_wrap=True)
    table.add_column("Timestamp", no_wrap=True)
    table.add_column("Field")
    table.add_column("Lost", style="dim")
    table.add_column("Value")
    for entry in entries:
        table.add_row(
            service.display_id(entry.entity_id),
            format_attic_timestamp(entry.timestamp),
            entry.field,
            entry.loser_source.value,
            _preview(entry.lost_value),
        )
    console.print(table)


@app.command()
def show(
    issue_id: str = typer.Argument(..., help="Issue ID"),
    timestamp: str = typer.Argument(..., help="Entry timestamp, as shown by 'tbd attic list'"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show one attic entry in full."""
    try:
        service = open_project().issues()
        entry = service.get_attic(issue_id, timestamp)
    except TbdError as e:
        raise fail(e)

    if json_output:
        console.print_json(json.dumps(entry.to_dict()))
        return
    console.print(
        yaml.safe_dump(entry.to_dict(), sort_keys=True, default_flow_style=False),
        markup=False,
    )


@app.command()
def restore(
    issue_id: str = typer.Argument(..., help="Issue ID"),
    timestamp: str = typer.Argument(..., help="Entry timestamp, as shown by 'tbd attic list'"),
) -> None:
    """
    Restore an archived value.

    The current value is archived in turn, so a restore can be undone.
    """
    try:
        service = open_project().issues()
        entry = service.get_attic(issue_id, timestamp)
        issue = service.restore_attic(issue_id, timestamp)
    except TbdError as e:
        raise fail(e)

    console.print(
        f"[green]✓[/green] Restored {entry.field} of {service.display_id(issue)} "
        f"(now version {issue.version})"
    )
