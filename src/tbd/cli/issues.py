"""
tbd CLI - Issue commands.

create, update, close, reopen, show and list. All of them read and write
issue files in the sync worktree; run ``tbd sync`` to share the changes.
"""

import json
from datetime import datetime
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from tbd.cli.context import open_project
from tbd.cli.errors import ExitCode, fail, print_error
from tbd.core.errors import TbdError
from tbd.core.issues.models import Issue, IssueKind, IssueStatus
from tbd.core.issues.service import IssueFilter, IssueService
from tbd.utils.timestamps import format_timestamp, parse_timestamp

console = Console()

PRIORITY_STYLES = {0: "red bold", 1: "red", 2: "yellow", 3: "blue", 4: "dim"}
STATUS_STYLES = {
    IssueStatus.OPEN: "green",
    IssueStatus.IN_PROGRESS: "cyan",
    IssueStatus.BLOCKED: "red",
    IssueStatus.DEFERRED: "dim",
    IssueStatus.CLOSED: "dim",
}


def _parse_date(value: str | None, option: str) -> datetime | None:
    if value is None:
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        print_error(
            f"Invalid date for {option}: {value}",
            solution="Use ISO-8601, e.g. 2025-03-01 or 2025-03-01T12:00:00Z",
        )
        raise typer.Exit(ExitCode.USER_ERROR)


def _issue_json(service: IssueService, issue: Issue) -> dict[str, Any]:
    data = issue.model_dump(mode="json")
    data["display_id"] = service.display_id(issue)
    return data


def _report(service: IssueService, verb: str, issue: Issue, json_output: bool) -> None:
    if json_output:
        console.print_json(json.dumps(_issue_json(service, issue)))
    else:
        console.print(f"[green]{verb}:[/green] {service.display_id(issue)} {issue.title}")


def create(
    title: str = typer.Argument(..., help="Issue title"),
    kind: IssueKind = typer.Option(IssueKind.TASK, "--type", "-t", help="Issue kind"),
    priority: int = typer.Option(
        2, "--priority", "-p", min=0, max=4, help="Priority (0 = critical, 4 = backlog)"
    ),
    description: str | None = typer.Option(None, "--description", "-d", help="Description"),
    labels: list[str] | None = typer.Option(
        None, "--label", "-l", help="Label (can be repeated)"
    ),
    assignee: str | None = typer.Option(None, "--assignee", "-a", help="Assignee"),
    parent: str | None = typer.Option(None, "--parent", help="Parent issue ID"),
    blocks: list[str] | None = typer.Option(
        None, "--blocks", help="ID of an issue this one blocks (can be repeated)"
    ),
    due: str | None = typer.Option(None, "--due", help="Due date (ISO-8601)"),
    defer: str | None = typer.Option(None, "--defer", help="Deferred until (ISO-8601)"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """
    Create a new issue.

    Examples:
        tbd create "Fix login bug" --type bug --priority 1
        tbd create "Write tests" --label testing --blocks proj-a7k2
    """
    due_date = _parse_date(due, "--due")
    deferred_until = _parse_date(defer, "--defer")
    try:
        service = open_project().issues()
        issue = service.create(
            title,
            kind=kind,
            priority=priority,
            description=description,
            labels=labels,
            assignee=assignee,
            parent=parent,
            blocks=blocks,
            due_date=due_date,
            deferred_until=deferred_until,
        )
    except TbdError as e:
        raise fail(e)
    _report(service, "Created", issue, json_output)


def update(
    issue_id: str = typer.Argument(..., help="Issue ID"),
    title: str | None = typer.Option(None, "--title", help="New title"),
    status: IssueStatus | None = typer.Option(None, "--status", "-s", help="New status"),
    kind: IssueKind | None = typer.Option(None, "--type", "-t", help="New kind"),
    priority: int | None = typer.Option(None, "--priority", "-p", min=0, max=4),
    description: str | None = typer.Option(None, "--description", "-d"),
    notes: str | None = typer.Option(None, "--notes", help="Replace the notes"),
    assignee: str | None = typer.Option(None, "--assignee", "-a"),
    parent: str | None = typer.Option(None, "--parent", help="New parent issue ID"),
    due: str | None = typer.Option(None, "--due", help="Due date (ISO-8601)"),
    defer: str | None = typer.Option(None, "--defer", help="Deferred until (ISO-8601)"),
    add_labels: list[str] | None = typer.Option(None, "--add-label", help="Add a label"),
    remove_labels: list[str] | None = typer.Option(
        None, "--remove-label", help="Remove a label"
    ),
    add_blocks: list[str] | None = typer.Option(
        None, "--blocks", help="Add an issue this one blocks"
    ),
    remove_blocks: list[str] | None = typer.Option(
        None, "--unblocks", help="Remove a blocks dependency"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """
    Update fields of an issue.

    Examples:
        tbd update proj-a7k2 --status in_progress --assignee alex
        tbd update proj-a7k2 --add-label backend --blocks proj-b3m9
    """
    changes: dict[str, Any] = {
        "title": title,
        "status": status,
        "kind": kind,
        "priority": priority,
        "description": description,
        "notes": notes,
        "assignee": assignee,
        "parent": parent,
        "due_date": _parse_date(due, "--due"),
        "deferred_until": _parse_date(defer, "--defer"),
    }
    changes = {key: value for key, value in changes.items() if value is not None}

    try:
        service = open_project().issues()
        issue = service.get(issue_id)
        if changes:
            issue = service.update(issue_id, **changes)
        if add_labels:
            issue = service.add_labels(issue_id, add_labels)
        if remove_labels:
            issue = service.remove_labels(issue_id, remove_labels)
        for target in add_blocks or []:
            issue = service.add_dependency(issue_id, target)
        for target in remove_blocks or []:
            issue = service.remove_dependency(issue_id, target)
    except TbdError as e:
        raise fail(e)
    _report(service, "Updated", issue, json_output)


def close(
    issue_id: str = typer.Argument(..., help="Issue ID"),
    reason: str | None = typer.Option(None, "--reason", "-r", help="Why it was closed"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Close an issue."""
    try:
        service = open_project().issues()
        issue = service.close(issue_id, reason)
    except TbdError as e:
        raise fail(e)
    _report(service, "Closed", issue, json_output)


def reopen(
    issue_id: str = typer.Argument(..., help="Issue ID"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Reopen a closed issue."""
    try:
        service = open_project().issues()
        issue = service.reopen(issue_id)
    except TbdError as e:
        raise fail(e)
    _report(service, "Reopened", issue, json_output)


def show(
    issue_id: str = typer.Argument(..., help="Issue ID"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show one issue in full."""
    try:
        service = open_project().issues()
        issue = service.get(issue_id)
    except TbdError as e:
        raise fail(e)

    if json_output:
        console.print_json(json.dumps(_issue_json(service, issue)))
        return

    status_style = STATUS_STYLES.get(issue.status, "")
    console.print(f"[bold]{service.display_id(issue)}[/bold] {issue.title}")
    console.print(
        f"  [{status_style}]{issue.status.value}[/{status_style}]"
        f"  {issue.kind.value}  P{issue.priority}  v{issue.version}"
    )
    if issue.assignee:
        console.print(f"  Assignee: {issue.assignee}")
    if issue.labels:
        console.print(f"  Labels: {', '.join(issue.labels)}")
    if issue.parent_id:
        console.print(f"  Parent: {service.display_id(issue.parent_id)}")
    if issue.dependencies:
        targets = ", ".join(service.display_id(dep.target) for dep in issue.dependencies)
        console.print(f"  Blocks: {targets}")
    if issue.due_date:
        console.print(f"  Due: {format_timestamp(issue.due_date)}")
    if issue.deferred_until:
        console.print(f"  Deferred until: {format_timestamp(issue.deferred_until)}")
    console.print(f"  Created: {format_timestamp(issue.created_at)}")
    console.print(f"  Updated: {format_timestamp(issue.updated_at)}")
    if issue.closed_at:
        reason = f" ({issue.close_reason})" if issue.close_reason else ""
        console.print(f"  Closed: {format_timestamp(issue.closed_at)}{reason}")
    if issue.description:
        console.print()
        console.print(issue.description, markup=False)
    if issue.notes:
        console.print()
        console.print("[bold]Notes[/bold]")
        console.print(issue.notes, markup=False)


def list_cmd(
    status: IssueStatus | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    kind: IssueKind | None = typer.Option(None, "--type", "-t", help="Filter by kind"),
    label: str | None = typer.Option(None, "--label", "-l", help="Filter by label"),
    assignee: str | None = typer.Option(None, "--assignee", "-a", help="Filter by assignee"),
    show_all: bool = typer.Option(False, "--all", help="Include closed issues"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """
    List issues, most urgent first.

    Closed issues are hidden unless --all or --status closed is given.
    """
    criteria = IssueFilter(
        status=status,
        kind=kind,
        label=label,
        assignee=assignee,
        include_closed=show_all or status is IssueStatus.CLOSED,
    )
    try:
        service = open_project().issues()
        issues = service.list_issues(criteria)
    except TbdError as e:
        raise fail(e)

    if json_output:
        console.print_json(json.dumps([_issue_json(service, issue) for issue in issues]))
        return

    if not issues:
        console.print("[dim]No issues found[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("P", justify="center")
    table.add_column("Status")
    table.add_column("Type")
    table.add_column("Title")
    table.add_column("Assignee", style="dim")

    for issue in issues:
        priority_style = PRIORITY_STYLES.get(issue.priority, "")
        status_style = STATUS_STYLES.get(issue.status, "")
        table.add_row(
            service.display_id(issue),
            f"[{priority_style}]P{issue.priority}[/{priority_style}]",
            f"[{status_style}]{issue.status.value}[/{status_style}]",
            issue.kind.value,
            issue.title,
            issue.assignee or "",
        )

    console.print(table)
    console.print(f"[dim]{len(issues)} issue(s)[/dim]")
