"""
Tests for IssueService.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import pytest

from tbd.core.errors import NotFound, SchemaViolation, ValidationError
from tbd.core.issues.models import IssueKind, IssueStatus
from tbd.core.issues.service import IssueFilter, IssueService


@pytest.fixture
def service(data_dir: Path, clock: Callable[[], datetime]) -> IssueService:
    return IssueService(data_dir, id_prefix="proj", clock=clock)


class TestCreate:
    """Tests for IssueService.create."""

    def test_create_assigns_ids(self, service: IssueService, data_dir: Path) -> None:
        issue = service.create("Fix the login bug", kind=IssueKind.BUG, priority=1)

        assert issue.id.startswith("is-")
        assert issue.version == 1
        assert issue.status is IssueStatus.OPEN
        display = service.display_id(issue)
        assert display.startswith("proj-")
        assert service.get(display) == issue
        assert (data_dir / "issues" / f"{issue.id}.md").exists()
        assert issue.id[3:] in (data_dir / "mappings" / "ids.yml").read_text()

    def test_create_with_relations(self, service: IssueService) -> None:
        epic = service.create("Epic", kind=IssueKind.EPIC)
        blocked = service.create("Blocked task")

        issue = service.create(
            "Child",
            parent=service.display_id(epic),
            blocks=[service.display_id(blocked)],
            labels=["b", "a", "a"],
        )

        assert issue.parent_id == epic.id
        assert [d.target for d in issue.dependencies] == [blocked.id]
        assert issue.labels == ["a", "b"]

    def test_create_invalid_priority(self, service: IssueService) -> None:
        with pytest.raises(SchemaViolation) as exc_info:
            service.create("Bad", priority=7)
        assert exc_info.value.field == "priority"

    def test_create_empty_title(self, service: IssueService) -> None:
        with pytest.raises(SchemaViolation):
            service.create("   ")

    def test_foreign_prefix_not_resolved(self, service: IssueService) -> None:
        issue = service.create("Task")
        short = service.display_id(issue).removeprefix("proj-")

        assert service.get(short) == issue
        with pytest.raises(NotFound):
            service.get(f"other-{short}")

    def test_unknown_parent(self, service: IssueService) -> None:
        with pytest.raises(NotFound):
            service.create("Child", parent="proj-zzzz")


class TestUpdate:
    """Tests for update, close and reopen."""

    def test_update_bumps_version(self, service: IssueService) -> None:
        issue = service.create("Task")

        updated = service.update(issue.id, title="Renamed", priority=0)

        assert updated.title == "Renamed"
        assert updated.priority == 0
        assert updated.version == 2
        assert updated.updated_at > issue.updated_at
        assert updated.created_at == issue.created_at

    def test_noop_update_keeps_version(self, service: IssueService) -> None:
        issue = service.create("Task")
        assert service.update(issue.id, title="Task") == issue

    def test_immutable_field_rejected(self, service: IssueService) -> None:
        issue = service.create("Task")
        with pytest.raises(ValidationError, match="Cannot update"):
            service.update(issue.id, created_at=datetime(2020, 1, 1, tzinfo=timezone.utc))

    def test_close_and_reopen(self, service: IssueService) -> None:
        issue = service.create("Task")

        closed = service.close(service.display_id(issue), reason="fixed")
        assert closed.status is IssueStatus.CLOSED
        assert closed.closed_at is not None
        assert closed.close_reason == "fixed"

        reopened = service.reopen(issue.id)
        assert reopened.status is IssueStatus.OPEN
        assert reopened.closed_at is None
        assert reopened.close_reason is None
        assert reopened.version == 3

    def test_status_update_sets_closed_at(self, service: IssueService) -> None:
        issue = service.create("Task")
        assert service.update(issue.id, status=IssueStatus.CLOSED).closed_at is not None

    def test_labels(self, service: IssueService) -> None:
        issue = service.create("Task", labels=["backend"])

        issue = service.add_labels(issue.id, ["urgent", "backend"])
        assert issue.labels == ["backend", "urgent"]

        issue = service.remove_labels(issue.id, ["backend"])
        assert issue.labels == ["urgent"]

    def test_dependencies(self, service: IssueService) -> None:
        blocker = service.create("Blocker")
        blocked = service.create("Blocked")

        updated = service.add_dependency(blocker.id, service.display_id(blocked))
        assert [d.target for d in updated.dependencies] == [blocked.id]

        again = service.add_dependency(blocker.id, blocked.id)
        assert again.version == updated.version

        removed = service.remove_dependency(blocker.id, blocked.id)
        assert removed.dependencies == []

    def test_cannot_block_itself(self, service: IssueService) -> None:
        issue = service.create("Task")
        with pytest.raises(ValidationError):
            service.add_dependency(issue.id, issue.id)

    def test_set_and_clear_parent(self, service: IssueService) -> None:
        parent = service.create("Epic", kind=IssueKind.EPIC)
        child = service.create("Child")

        assert service.update(child.id, parent=service.display_id(parent)).parent_id == parent.id
        assert service.update(child.id, parent=None).parent_id is None


class TestList:
    """Tests for IssueService.list_issues."""

    def test_ordering(self, service: IssueService) -> None:
        low = service.create("Low", priority=3)
        first_p1 = service.create("First P1", priority=1)
        second_p1 = service.create("Second P1", priority=1)

        assert [i.id for i in service.list_issues()] == [first_p1.id, second_p1.id, low.id]

    def test_filters(self, service: IssueService) -> None:
        bug = service.create("Bug", kind=IssueKind.BUG, labels=["backend"], assignee="alice")
        task = service.create("Task")
        done = service.create("Done")
        service.close(done.id)

        assert [i.id for i in service.list_issues(IssueFilter(kind=IssueKind.BUG))] == [bug.id]
        assert [i.id for i in service.list_issues(IssueFilter(label="backend"))] == [bug.id]
        assert [i.id for i in service.list_issues(IssueFilter(assignee="alice"))] == [bug.id]
        assert {i.id for i in service.list_issues(IssueFilter(include_closed=False))} == {
            bug.id,
            task.id,
        }
        closed = service.list_issues(IssueFilter(status=IssueStatus.CLOSED))
        assert [i.id for i in closed] == [done.id]

    def test_invalid_file_skipped(
        self, service: IssueService, data_dir: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        good = service.create("Good")
        (data_dir / "issues" / "is-01hx5zzkbkactav9wevgemmvrz.md").write_text("garbage\n")

        assert [i.id for i in service.list_issues()] == [good.id]
        assert "Skipping invalid issue file" in caplog.text
