"""
Standardized error handling and exit codes for the tbd CLI.

This module provides consistent error messaging with actionable guidance
and standardized exit codes across all CLI commands.
"""

from enum import IntEnum

import typer
from rich.console import Console

from tbd.core.errors import (
    LockTimeout,
    NotFound,
    NotInitializedError,
    SyncFailed,
    TbdError,
    ValidationError,
)
from tbd.core.git.client import GitError

console = Console(stderr=True)


class ExitCode(IntEnum):
    """Standard exit codes for tbd CLI operations."""

    SUCCESS = 0
    """Operation completed successfully."""

    GENERAL_ERROR = 1
    """Generic error (git failure, failed sync, corrupted worktree)."""

    USER_ERROR = 2
    """Invalid input or project state the user can fix directly."""


def print_error(
    problem: str,
    *,
    reason: str | None = None,
    solution: str | None = None,
) -> None:
    """
    Print a standardized error message with actionable guidance.

    Args:
        problem: Brief description of what went wrong
        reason: Optional explanation of why it happened
        solution: Optional command or action to fix it

    Example:
        >>> print_error(
        ...     "Sync worktree is missing",
        ...     solution="tbd doctor --fix",
        ... )
    """
    console.print(f"[red]Error:[/red] {problem}")

    if reason:
        console.print(f"[dim]{reason}[/dim]")

    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {solution}")


def exit_code_for(error: TbdError) -> ExitCode:
    if isinstance(error, (ValidationError, NotFound, NotInitializedError)):
        return ExitCode.USER_ERROR
    return ExitCode.GENERAL_ERROR


def fail(error: TbdError) -> typer.Exit:
    """
    Print ``error`` with its hint and return the Exit to raise.

    Usage:
        except TbdError as e:
            raise fail(e)
    """
    reason = None
    if isinstance(error, GitError) and error.stderr:
        reason = error.stderr
    elif isinstance(error, SyncFailed) and error.retryable:
        reason = "The failure is transient; retrying is safe."
    elif isinstance(error, LockTimeout):
        reason = "Another tbd process is using the sync worktree."
    print_error(error.message, reason=reason, solution=error.hint)
    return typer.Exit(exit_code_for(error))
