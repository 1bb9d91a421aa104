"""
tbd CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import logging

import typer
from rich.console import Console

from tbd import __version__
from tbd.cli import attic, doctor, import_cmd, init_cmd, issues, sync

# Help panel names for command grouping
PANEL_ISSUES = "Work with Issues"
PANEL_SYNC = "Sync and Maintenance"

app = typer.Typer(
    name="tbd",
    help="Git-native issue tracking",
    no_args_is_help=True,
    add_completion=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
) -> None:
    """
    tbd - issues that live in your git repository.

    Issues are stored as Markdown files on a dedicated sync branch and
    exchanged with `tbd sync`. Your working tree and current branch are
    never touched.

    Quick Start:
        1. tbd init --prefix proj       # Initialize the repository
        2. tbd create "Title"           # Create an issue
        3. tbd sync                     # Share it
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"debug": debug}


# =============================================================================
# Work with Issues
# =============================================================================

app.command(name="init", rich_help_panel=PANEL_ISSUES)(init_cmd.main)
app.command(name="create", rich_help_panel=PANEL_ISSUES)(issues.create)
app.command(name="update", rich_help_panel=PANEL_ISSUES)(issues.update)
app.command(name="close", rich_help_panel=PANEL_ISSUES)(issues.close)
app.command(name="reopen", rich_help_panel=PANEL_ISSUES)(issues.reopen)
app.command(name="show", rich_help_panel=PANEL_ISSUES)(issues.show)
app.command(name="list", rich_help_panel=PANEL_ISSUES)(issues.list_cmd)
app.command(name="import", rich_help_panel=PANEL_ISSUES)(import_cmd.main)


# =============================================================================
# Sync and Maintenance
# =============================================================================

app.command(name="sync", rich_help_panel=PANEL_SYNC)(sync.main)
app.command(name="doctor", rich_help_panel=PANEL_SYNC)(doctor.main)
app.add_typer(attic.app, name="attic", rich_help_panel=PANEL_SYNC)


@app.command(rich_help_panel=PANEL_SYNC)
def version() -> None:
    """Show tbd version and exit."""
    console.print(f"tbd version {__version__}")


def cli_main() -> None:
    """Main CLI entry point."""
    app()


__all__ = ["app", "cli_main"]
