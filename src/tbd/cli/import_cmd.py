"""
tbd CLI - Import command.
"""

from pathlib import Path

import typer
from rich.console import Console

from tbd.cli.context import open_project
from tbd.cli.errors import ExitCode, fail
from tbd.core.errors import TbdError
from tbd.core.imports.beads import DEFAULT_BEADS_FILE, import_beads_file

console = Console()


def main(
    path: Path | None = typer.Argument(
        None, help="Beads JSONL export (default: .beads/issues.jsonl in the project)"
    ),
) -> None:
    """
    Import issues from a Beads JSONL export.

    Beads short IDs are kept: proj-100 becomes <prefix>-100. Importing the
    same file again merges changes into the already-imported issues.

    Examples:
        tbd import
        tbd import ../old-project/.beads/issues.jsonl
    """
    try:
        project = open_project()
        service = project.issues()
        result = import_beads_file(path or project.root / DEFAULT_BEADS_FILE, service)
    except TbdError as e:
        raise fail(e)

    for error in result.errors:
        console.print(f"[yellow]⚠[/yellow]  {error}")
    console.print(f"[green]✓[/green] {result.summary()}")
    console.print("\n[dim]→ Run [bold]tbd sync[/bold] to share the imported issues[/dim]")
    if result.errors and not (result.imported or result.merged or result.skipped):
        raise typer.Exit(ExitCode.GENERAL_ERROR)
