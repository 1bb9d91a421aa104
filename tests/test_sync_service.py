"""
Tests for SyncService, run against real git.

Each test machine is a clone with its own sync worktree; a bare
repository stands in for the shared remote.
"""

from __future__ import annotations

import shutil
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest

from tbd.core.attic.archive import AtticArchive
from tbd.core.attic.models import AtticContext, AtticEntry, AtticFilter, Side
from tbd.core.config.loader import load_state
from tbd.core.errors import SyncBranchError, SyncFailed, WorktreeMissingError
from tbd.core.git.client import GitClient, GitError
from tbd.core.sync.models import SyncOptions, SyncStatus
from tbd.core.worktree import WorktreeStatus

if TYPE_CHECKING:
    from conftest import Machine

GitRunner = Callable[[list[str], Path], str]

REJECTED = GitError("git push failed", stderr="! [rejected] tbd-sync -> tbd-sync (fetch first)")

ARCHIVED_AT = datetime(2025, 1, 7, 12, 0, tzinfo=timezone.utc)


def archive_priority(machine: Machine, issue_id: str, lost_value: int) -> None:
    """Write an attic entry at ARCHIVED_AT, as a merge on ``machine`` would."""
    AtticArchive(machine.data_dir).record(
        AtticEntry(
            entity_id=issue_id,
            timestamp=ARCHIVED_AT,
            field="priority",
            lost_value=lost_value,
            winner_source=Side.REMOTE,
            loser_source=Side.LOCAL,
            context=AtticContext(
                local_version=2,
                remote_version=2,
                local_updated_at="2025-01-07T11:00:00.000Z",
                remote_updated_at="2025-01-07T11:00:00.000Z",
            ),
        )
    )


class TestLocalOnly:
    """Sync without a remote."""

    def test_commits_locally(self, machine: Machine, git: GitRunner) -> None:
        before = git(["status", "--porcelain"], machine.root)
        machine.issues().create("Local issue")

        result = machine.sync_service().sync()

        assert result.success
        assert len(result.commits) == 1
        assert not result.pushed
        assert "no remote" in result.message
        assert git(["log", "-1", "--format=%s", "tbd-sync"], machine.root) == (
            "tbd: sync local changes"
        )
        assert git(["status", "--porcelain"], machine.manager.worktree_path) == ""
        assert git(["status", "--porcelain"], machine.root) == before

    def test_nothing_to_commit(self, machine: Machine) -> None:
        result = machine.sync_service().sync()
        assert result.commits == []

    def test_records_last_sync(self, machine: Machine) -> None:
        result = machine.sync_service().sync()
        assert load_state(machine.root).last_sync_at == result.completed_at

    def test_conflict_markers_refused(self, machine: Machine) -> None:
        issue = machine.issues().create("Issue")
        path = machine.data_dir / "issues" / f"{issue.id}.md"
        path.write_text("<<<<<<< HEAD\ntitle: a\n=======\ntitle: b\n>>>>>>> remote\n")

        with pytest.raises(SyncFailed, match="conflict markers"):
            machine.sync_service().sync()

    def test_unhealthy_worktree(self, machine: Machine) -> None:
        shutil.rmtree(machine.manager.worktree_path)

        with pytest.raises(WorktreeMissingError):
            machine.sync_service().sync()

        result = machine.sync_service().sync(SyncOptions(fix=True))
        assert result.repair is not None
        assert machine.manager.check_health().is_valid

    def test_corrupted_worktree_recovered_from_backup(self, machine: Machine) -> None:
        service = machine.issues()
        unsaved = [service.create(f"Unsaved {n}") for n in range(5)]
        (machine.manager.worktree_path / ".git").unlink()

        assert machine.manager.check_health().status is WorktreeStatus.CORRUPTED
        repair = machine.manager.repair()

        assert repair.backup_path is not None
        backed_up = repair.backup_path / ".tbd" / "data-sync" / "issues"
        assert sorted(p.name for p in backed_up.glob("*.md")) == sorted(
            f"{issue.id}.md" for issue in unsaved
        )
        result = machine.sync_service().sync()
        assert result.success
        assert machine.manager.check_health().is_valid


class TestTwoMachines:
    """Sync between two clones of the same project."""

    def test_push_publishes_issue(
        self, machines: tuple[Machine, Machine], remote_repo: Path, git: GitRunner
    ) -> None:
        alice, _ = machines
        issue = alice.issues().create("Shared issue")

        result = alice.sync_service().sync()

        assert result.pushed
        files = git(["ls-tree", "-r", "--name-only", "tbd-sync"], remote_repo).splitlines()
        assert f".tbd/data-sync/issues/{issue.id}.md" in files

    def test_concurrent_creates_merge_cleanly(self, machines: tuple[Machine, Machine]) -> None:
        alice, bob = machines
        a = alice.issues().create("From alice")
        b = bob.issues().create("From bob")

        alice.sync_service().sync()
        result = bob.sync_service().sync()

        assert result.pulled
        assert result.pushed
        assert result.merged_entities == 0
        assert result.attic_entries == []

        alice.sync_service().sync()
        for machine in (alice, bob):
            service = machine.issues()
            assert {i.id for i in service.list_issues()} == {a.id, b.id}
            assert service.get(service.display_id(a)).title == "From alice"
            assert service.get(service.display_id(b)).title == "From bob"

    def test_fast_forward(self, machines: tuple[Machine, Machine]) -> None:
        alice, bob = machines
        issue = alice.issues().create("From alice")
        alice.sync_service().sync()

        result = bob.sync_service().sync()

        assert result.pulled
        assert result.commits == []
        assert not result.pushed
        assert bob.issues().get(issue.id).title == "From alice"

    def test_conflicting_edit_archives_loser(self, machines: tuple[Machine, Machine]) -> None:
        alice, bob = machines
        issue = alice.issues().create("Shared", priority=2)
        alice.sync_service().sync()
        bob.sync_service().sync()

        bob.issues().update(issue.id, priority=0)
        alice.issues().update(issue.id, priority=3)
        alice.sync_service().sync()
        result = bob.sync_service().sync()

        assert result.merged_entities == 1
        assert [e.field for e in result.attic_entries] == ["priority"]
        assert result.attic_entries[0].lost_value == 0
        assert bob.issues().get(issue.id).priority == 3

        alice.sync_service().sync()
        alice_service = alice.issues()
        assert alice_service.get(issue.id).priority == 3
        assert [e.lost_value for e in alice_service.list_attic(issue.id)] == [0]

    def test_edits_to_different_fields_both_survive(
        self, machines: tuple[Machine, Machine]
    ) -> None:
        alice, bob = machines
        issue = alice.issues().create("Shared")
        alice.sync_service().sync()
        bob.sync_service().sync()

        alice.issues().update(issue.id, title="Retitled")
        bob.issues().update(issue.id, assignee="bob")
        alice.sync_service().sync()
        result = bob.sync_service().sync()

        merged = bob.issues().get(issue.id)
        assert merged.title == "Retitled"
        assert merged.assignee == "bob"
        assert result.attic_entries == []

    def test_labels_unioned(self, machines: tuple[Machine, Machine]) -> None:
        alice, bob = machines
        issue = alice.issues().create("Shared")
        alice.sync_service().sync()
        bob.sync_service().sync()

        alice.issues().add_labels(issue.id, ["frontend"])
        bob.issues().add_labels(issue.id, ["urgent"])
        alice.sync_service().sync()
        result = bob.sync_service().sync()

        assert bob.issues().get(issue.id).labels == ["frontend", "urgent"]
        assert result.attic_entries == []

    def test_no_pull_refuses_divergence(self, machines: tuple[Machine, Machine]) -> None:
        alice, bob = machines
        alice.issues().create("From alice")
        alice.sync_service().sync()
        bob.issues().create("From bob")

        with pytest.raises(SyncFailed, match="not present locally"):
            bob.sync_service().sync(SyncOptions(pull=False))

    def test_force_archives_overwritten_versions(
        self, machines: tuple[Machine, Machine], remote_repo: Path, git: GitRunner
    ) -> None:
        alice, bob = machines
        issue = alice.issues().create("Original")
        alice.sync_service().sync()
        bob.sync_service().sync()

        alice.issues().update(issue.id, title="Alice's title")
        bob.issues().update(issue.id, title="Bob's title")
        alice.sync_service().sync()
        result = bob.sync_service().sync(SyncOptions(force=True))

        assert result.pushed
        assert [e.field for e in result.attic_entries] == ["full"]
        assert result.attic_entries[0].lost_value["title"] == "Alice's title"
        remote_file = git(
            ["show", f"tbd-sync:.tbd/data-sync/issues/{issue.id}.md"], remote_repo
        )
        assert "title: Bob's title" in remote_file
        assert git(["rev-parse", "tbd-sync"], remote_repo) == git(
            ["rev-parse", "tbd-sync"], bob.root
        )


    def test_staged_changes_untouched(
        self, machines: tuple[Machine, Machine], git: GitRunner
    ) -> None:
        alice, bob = machines
        alice.issues().create("From alice")
        alice.sync_service().sync()

        (bob.root / "work.txt").write_text("half-finished change\n")
        git(["add", "work.txt"], bob.root)
        head = git(["rev-parse", "HEAD"], bob.root)
        bob.issues().create("From bob")

        result = bob.sync_service().sync()

        assert result.pulled
        assert result.pushed
        assert git(["diff", "--cached", "--name-status"], bob.root) == "A\twork.txt"
        assert git(["rev-parse", "HEAD"], bob.root) == head
        assert git(["rev-parse", "--abbrev-ref", "HEAD"], bob.root) != "tbd-sync"

    def test_colliding_attic_entries_both_kept(self, machines: tuple[Machine, Machine]) -> None:
        alice, bob = machines
        issue = alice.issues().create("Shared")
        alice.sync_service().sync()
        bob.sync_service().sync()

        archive_priority(alice, issue.id, lost_value=0)
        archive_priority(bob, issue.id, lost_value=3)
        alice.sync_service().sync()
        bob.sync_service().sync()
        alice.sync_service().sync()

        for machine in (alice, bob):
            entries = AtticArchive(machine.data_dir).list(AtticFilter(entity_id=issue.id))
            assert sorted(e.lost_value for e in entries) == [0, 3]
            assert len({e.timestamp for e in entries}) == 2

    def test_merge_without_commit_fails(self, machines: tuple[Machine, Machine]) -> None:
        alice, bob = machines
        alice.issues().create("From alice")
        alice.sync_service().sync()
        bob.issues().create("From bob")
        service = bob.sync_service()
        commit_worktree = service._commit_worktree

        def no_merge_commit(git: GitClient, parents: list[str], message: str) -> str | None:
            return None if len(parents) == 2 else commit_worktree(git, parents, message)

        with patch.object(service, "_commit_worktree", side_effect=no_merge_commit):
            with pytest.raises(SyncBranchError, match="produced no commit"):
                service.sync()


class TestPushAndFetchFailures:
    """Retry and failure behavior around the network."""

    def test_rejected_push_is_retried(self, machines: tuple[Machine, Machine]) -> None:
        alice, _ = machines
        alice.issues().create("Issue")

        with patch.object(GitClient, "push", side_effect=[REJECTED, None]) as push:
            result = alice.sync_service().sync()

        assert push.call_count == 2
        assert result.attempts == 2
        assert result.pushed

    def test_gives_up_after_retries(self, machines: tuple[Machine, Machine]) -> None:
        alice, _ = machines
        alice.issues().create("Issue")

        with patch.object(GitClient, "push", side_effect=REJECTED) as push:
            with pytest.raises(SyncFailed) as exc_info:
                alice.sync_service(push_retries=2).sync()

        assert push.call_count == 2
        assert not exc_info.value.retryable

    def test_fetch_timeout_is_retryable(self, machines: tuple[Machine, Machine]) -> None:
        alice, _ = machines
        timeout = GitError("git fetch timed out after 60s", timed_out=True)

        with patch.object(GitClient, "fetch", side_effect=timeout):
            with pytest.raises(SyncFailed) as exc_info:
                alice.sync_service().sync()

        assert exc_info.value.retryable

    def test_unreachable_remote_is_retryable(self, machines: tuple[Machine, Machine]) -> None:
        alice, _ = machines
        unreachable = GitError(
            "git fetch failed", stderr="fatal: Could not read from remote repository."
        )

        with patch.object(GitClient, "fetch", side_effect=unreachable):
            with pytest.raises(SyncFailed) as exc_info:
                alice.sync_service().sync()

        assert exc_info.value.retryable


class TestStatus:
    """Tests for SyncService.status."""

    def test_no_remote(self, machine: Machine) -> None:
        report = machine.sync_service().status()
        assert report.status is SyncStatus.NO_REMOTE
        assert report.local_tip is not None

    def test_uncommitted_changes(self, machines: tuple[Machine, Machine]) -> None:
        alice, _ = machines
        alice.issues().create("Issue")

        report = alice.sync_service().status()

        assert report.status is SyncStatus.UP_TO_DATE
        assert report.uncommitted
        assert report.has_local_changes
        assert report.last_sync_at is not None

    def test_behind_after_fetch(self, machines: tuple[Machine, Machine]) -> None:
        alice, bob = machines
        alice.issues().create("Issue")
        alice.sync_service().sync()

        assert bob.sync_service().status().status is SyncStatus.UP_TO_DATE

        report = bob.sync_service().status(fetch=True)
        assert report.status is SyncStatus.BEHIND
        assert report.behind == 1

    def test_ahead_after_local_commit(self, machines: tuple[Machine, Machine]) -> None:
        alice, _ = machines
        alice.issues().create("Issue")
        alice.sync_service().sync(SyncOptions(push=False))

        report = alice.sync_service().status()
        assert report.status is SyncStatus.AHEAD
        assert report.ahead == 1
