"""
Git-based issue synchronization service.

Issue files are edited in the sync worktree and committed to the sync
branch with git plumbing through an isolated index (never the user's
index). A sync runs, in order:

1. check worktree health (repair only when asked to)
2. commit local changes on top of the local sync branch tip
3. fetch the remote sync branch
4. integrate: fast-forward, or merge per file with issues merged field
   by field and discarded values written to the attic
5. push, and on a non-fast-forward rejection go back to 3 (bounded)
6. reset the worktree to the new branch tip

Conflicts are detected only through git: a rejected push or a diverged
history. Issue ``version`` counters are never compared.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from tbd.core.attic.archive import AtticArchive, parse_attic_entry
from tbd.core.attic.models import (
    FULL_ENTITY_FIELD,
    AtticContext,
    AtticEntry,
    Side,
    format_attic_timestamp,
)
from tbd.core.config.loader import load_state, save_state
from tbd.core.config.models import TbdConfig
from tbd.core.errors import SyncBranchError, SyncFailed, ValidationError
from tbd.core.git.client import GitClient, GitError, TreeEntry
from tbd.core.ids.mapping import (
    IdMapping,
    format_id_mapping,
    load_id_mapping,
    merge_id_mappings,
    parse_id_mapping,
    reconcile_mappings,
    save_id_mapping,
)
from tbd.core.issues.codec import decode_issue, encode_issue
from tbd.core.issues.models import Issue
from tbd.core.issues.store import IssueStore
from tbd.core.merge.engine import MergeEngine, issue_values
from tbd.core.paths import (
    ATTIC_DIR_NAME,
    DATA_SYNC_DIR,
    IDS_TREE_PATH,
    ISSUES_DIR_NAME,
    META_TREE_PATH,
    tree_path,
)
from tbd.core.sync.models import SyncOptions, SyncResult, SyncStatus, SyncStatusReport
from tbd.core.worktree.manager import WorktreeManager
from tbd.core.worktree.models import PathMode
from tbd.utils.atomic import atomic_write_text
from tbd.utils.timestamps import format_timestamp, utc_now
from tbd.utils.yaml_io import has_conflict_markers

logger = logging.getLogger(__name__)

DEFAULT_PUSH_RETRIES = 3

_ISSUES_PREFIX = tree_path(ISSUES_DIR_NAME) + "/"
_ATTIC_PREFIX = tree_path(ATTIC_DIR_NAME) + "/"

_NETWORK_HINT = "Check your network connection and the remote, then retry 'tbd sync'."


def _is_issue_path(path: str) -> bool:
    return path.startswith(_ISSUES_PREFIX) and path.endswith(".md")


def _is_attic_path(path: str) -> bool:
    return path.startswith(_ATTIC_PREFIX) and path.endswith(".yml")


class SyncService:
    """
    Synchronizes the sync branch with its remote.

    Example:
        >>> manager = WorktreeManager.from_config(root, config, GitClient(root))
        >>> service = SyncService(manager, push_retries=3)
        >>> result = service.sync(SyncOptions())
        >>> print(result.summary())
        sync succeeded, 1 commit(s), tip 3f1c2a9b, pushed to origin
    """

    def __init__(
        self,
        manager: WorktreeManager,
        *,
        push_retries: int = DEFAULT_PUSH_RETRIES,
        engine: MergeEngine | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.manager = manager
        self.push_retries = push_retries
        self.clock = clock
        self.engine = engine or MergeEngine(clock=clock)

    @classmethod
    def from_config(
        cls, project_root: Path, config: TbdConfig, git: GitClient
    ) -> SyncService:
        manager = WorktreeManager.from_config(project_root, config, git)
        return cls(manager, push_retries=config.settings.push_retries)

    @property
    def branch(self) -> str:
        return self.manager.branch

    @property
    def remote(self) -> str:
        return self.manager.remote

    @property
    def worktree_path(self) -> Path:
        return self.manager.worktree_path

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync(self, options: SyncOptions | None = None) -> SyncResult:
        """
        Run a full sync.

        Returns:
            SyncResult describing commits, merges and attic entries.

        Raises:
            WorktreeMissingError / WorktreeCorruptedError: If the worktree is
                unhealthy and ``options.fix`` is not set.
            SyncFailed: If pushes keep being rejected, the remote is
                unreachable (``retryable=True``), or a file holds conflict
                markers.
            MergeImmutableConflict: If two versions of an issue disagree on
                an immutable field.
            GitError: On local git failures, surfaced verbatim.
        """
        options = options or SyncOptions()
        git = self.manager.require_git()
        result = SyncResult(started_at=self.clock())

        health = self.manager.check_health()
        if not health.is_valid:
            if not options.fix:
                raise self.manager.health_error(health)
            result.repair = self.manager.repair()

        self.manager.resolve_path(PathMode.STRICT)

        try:
            with self.manager.lock:
                self._sync_locked(git, options, result)
        except GitError as e:
            if e.timed_out:
                raise SyncFailed(
                    f"Git timed out during sync: {e.message}", retryable=True, hint=_NETWORK_HINT
                ) from e
            raise

        now = self.clock()
        state = load_state(self.manager.project_root)
        state.last_sync_at = now
        save_state(self.manager.project_root, state)

        result.completed_at = now
        logger.info("Sync complete: %s", result.summary())
        return result

    def _sync_locked(self, git: GitClient, options: SyncOptions, result: SyncResult) -> None:
        local_tip = git.rev_parse(self.manager.branch_ref)
        if local_tip is None:
            raise SyncBranchError(
                f"Sync branch '{self.branch}' does not exist",
                hint="Run 'tbd doctor --fix' to recreate it.",
            )

        committed = self._commit_worktree(git, [local_tip], "tbd: sync local changes")
        if committed is not None:
            result.commits.append(committed)
            local_tip = committed

        if not git.has_remote(self.remote):
            logger.info("No remote '%s'; changes committed locally only", self.remote)
            result.message = f"no remote '{self.remote}', committed locally"
            result.local_tip = local_tip
            self._refresh_worktree(git)
            return

        result.remote = self.remote
        attempts = max(1, self.push_retries)
        for attempt in range(1, attempts + 1):
            remote_tip = self._fetch(git)

            if remote_tip is not None and not git.is_ancestor(remote_tip, local_tip):
                if options.force and options.push:
                    local_tip = self._archive_overwritten(git, local_tip, remote_tip, result)
                elif options.pull:
                    local_tip = self._integrate(git, local_tip, remote_tip, result)
                else:
                    raise SyncFailed(
                        f"Remote '{self.remote}/{self.branch}' has changes not present locally",
                        hint="Run 'tbd sync' without --no-pull to integrate them.",
                    )

            if not options.push or local_tip == remote_tip:
                break

            result.attempts = attempt
            lease = remote_tip if options.force else None
            try:
                git.push(self.remote, self.branch, force_with_lease=lease)
            except GitError as e:
                if e.timed_out:
                    raise
                if e.is_push_rejection:
                    logger.warning(
                        "Push to %s rejected (attempt %d of %d)", self.remote, attempt, attempts
                    )
                    continue
                raise SyncFailed(
                    f"Could not push to '{self.remote}': {e.message}",
                    retryable=True,
                    hint=_NETWORK_HINT,
                ) from e
            result.pushed = True
            logger.info("Pushed %s to %s (%s)", self.branch, self.remote, local_tip[:8])
            break
        else:
            raise SyncFailed(
                f"Push to '{self.remote}' was rejected {attempts} times; "
                "the remote keeps changing",
                hint="Run 'tbd sync --status' to inspect, then retry 'tbd sync'.",
            )

        result.local_tip = local_tip
        self._refresh_worktree(git)

    def _fetch(self, git: GitClient) -> str | None:
        try:
            return git.fetch(self.remote, self.branch)
        except GitError as e:
            if e.timed_out:
                raise
            raise SyncFailed(
                f"Could not fetch from '{self.remote}': {e.message}",
                retryable=True,
                hint=_NETWORK_HINT,
            ) from e

    def _refresh_worktree(self, git: GitClient) -> None:
        """Make the checkout match the branch tip. Everything is committed by now."""
        git.reset_hard(self.worktree_path)

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    def _commit_worktree(self, git: GitClient, parents: list[str], message: str) -> str | None:
        """
        Commit the worktree's data directory on top of ``parents[0]``.

        Staging happens in the isolated index. With a single parent nothing
        is committed when the tree is unchanged; a merge (two parents) is
        always committed.

        Returns:
            The new commit SHA, or None if there was nothing to commit.

        Raises:
            SyncFailed: If a changed file contains merge conflict markers.
        """
        index = git.isolated_index_path
        index.unlink(missing_ok=True)
        try:
            git.read_tree(parents[0], index)
            git.add_all(index, self.worktree_path, DATA_SYNC_DIR)
            tree = git.write_tree(index)
        finally:
            index.unlink(missing_ok=True)

        base_tree = git.tree_of(parents[0])
        if tree == base_tree and len(parents) == 1:
            logger.debug("Nothing to commit on %s", self.branch)
            return None

        changed = git.diff_tree_names(base_tree, tree) if tree != base_tree else []
        self._check_conflict_markers(changed)

        commit = git.commit_tree(tree, message, parents)
        git.update_ref(self.manager.branch_ref, commit, parents[0])
        logger.info(
            "Committed %s on %s (%d file(s) changed)", commit[:8], self.branch, len(changed)
        )
        return commit

    def _check_conflict_markers(self, paths: list[str]) -> None:
        for path in paths:
            file_path = self.worktree_path / path
            if not file_path.is_file():
                continue
            if has_conflict_markers(file_path.read_text(encoding="utf-8", errors="replace")):
                raise SyncFailed(
                    f"{path} contains merge conflict markers; refusing to commit it",
                    hint=f"Edit {file_path} to resolve the conflict, then retry 'tbd sync'.",
                )

    # ------------------------------------------------------------------
    # Integration
    # ------------------------------------------------------------------

    def _write_file(self, path: str, content: str | None) -> None:
        target = self.worktree_path / path
        if content is None:
            target.unlink(missing_ok=True)
        else:
            atomic_write_text(target, content)

    def _integrate(
        self, git: GitClient, local_tip: str, remote_tip: str, result: SyncResult
    ) -> str:
        """
        Bring ``remote_tip`` into the local branch.

        Returns:
            The new local tip.
        """
        if git.is_ancestor(local_tip, remote_tip):
            git.update_ref(self.manager.branch_ref, remote_tip, local_tip)
            self._refresh_worktree(git)
            result.pulled = True
            logger.info("Fast-forwarded %s to %s", self.branch, remote_tip[:8])
            return remote_tip

        base = git.merge_base(local_tip, remote_tip)
        base_tree = git.ls_tree(base, DATA_SYNC_DIR) if base else {}
        local_tree = git.ls_tree(local_tip, DATA_SYNC_DIR)
        remote_tree = git.ls_tree(remote_tip, DATA_SYNC_DIR)
        archive = AtticArchive(self.manager.data_dir, clock=self.clock)

        for path in sorted(set(local_tree) | set(remote_tree)):
            base_sha = base_tree[path].sha if path in base_tree else None
            local_sha = local_tree[path].sha if path in local_tree else None
            remote_sha = remote_tree[path].sha if path in remote_tree else None

            if local_sha == remote_sha or remote_sha == base_sha:
                continue
            if local_sha == base_sha:
                self._write_file(path, git.cat_blob(remote_sha) if remote_sha else None)
                continue
            if local_sha is None or remote_sha is None:
                # Deleted on one side, changed on the other: the changed copy survives
                if remote_sha is not None:
                    self._write_file(path, git.cat_blob(remote_sha))
                continue

            self._merge_path(git, path, base_sha, local_sha, remote_sha, archive, result)

        remote_ids = remote_tree.get(IDS_TREE_PATH)
        historical = (
            parse_id_mapping(git.cat_blob(remote_ids.sha), source=f"{remote_tip[:8]}:ids.yml")
            if remote_ids
            else None
        )
        self._reconcile_mappings(historical)

        merged = self._commit_worktree(
            git,
            [local_tip, remote_tip],
            f"tbd: merge {self.remote}/{self.branch}",
        )
        if merged is None:
            raise SyncBranchError(f"Merging {self.remote}/{self.branch} produced no commit")
        result.commits.append(merged)
        result.pulled = True
        return merged

    def _merge_path(
        self,
        git: GitClient,
        path: str,
        base_sha: str | None,
        local_sha: str,
        remote_sha: str,
        archive: AtticArchive,
        result: SyncResult,
    ) -> None:
        """Resolve one file that both sides changed."""
        if path == IDS_TREE_PATH:
            local = parse_id_mapping(git.cat_blob(local_sha), source="local ids.yml")
            remote = parse_id_mapping(git.cat_blob(remote_sha), source="remote ids.yml")
            self._write_file(path, format_id_mapping(merge_id_mappings(local, remote)))
            return

        if _is_issue_path(path):
            local_issue = decode_issue(git.cat_blob(local_sha), source=f"local {path}")
            remote_issue = decode_issue(git.cat_blob(remote_sha), source=f"remote {path}")
            base_issue = self._decode_base(git, path, base_sha)

            outcome = self.engine.merge_entity(local_issue, remote_issue, base_issue)
            result.merged_entities += 1
            result.attic_entries.extend(archive.record_all(outcome.attic_entries))
            self._write_file(path, encode_issue(outcome.merged))
            return

        if _is_attic_path(path):
            self._keep_both_attic_entries(git, path, remote_sha, archive)
            return

        # meta.yml and anything else: the local copy stays
        if path != META_TREE_PATH:
            logger.warning("Both sides changed %s; keeping the local copy", path)

    def _keep_both_attic_entries(
        self, git: GitClient, path: str, remote_sha: str, archive: AtticArchive
    ) -> None:
        """Both sides archived an entry under the same name; store the remote one beside it."""
        try:
            entry = parse_attic_entry(git.cat_blob(remote_sha), source=f"remote {path}")
        except ValidationError as e:
            logger.warning(
                "Keeping the local %s; the remote copy is unreadable: %s", path, e.message
            )
            return
        stored = archive.record(entry)
        logger.info(
            "Both sides archived %s; remote entry kept at %s",
            path,
            format_attic_timestamp(stored.timestamp),
        )

    def _decode_base(self, git: GitClient, path: str, base_sha: str | None) -> Issue | None:
        if base_sha is None:
            return None
        try:
            return decode_issue(git.cat_blob(base_sha), source=f"base {path}")
        except ValidationError as e:
            logger.warning("Ignoring unreadable merge base of %s: %s", path, e.message)
            return None

    def _reconcile_mappings(self, historical: IdMapping | None) -> None:
        """Every issue in the worktree must have a short ID after a merge."""
        data_dir = self.manager.data_dir
        mapping = load_id_mapping(data_dir)
        issue_ids = IssueStore(data_dir, sweep=False).list_ids()
        created, recovered = reconcile_mappings(issue_ids, mapping, historical)
        if created or recovered:
            save_id_mapping(data_dir, mapping)
            logger.info(
                "Reconciled ID mapping: %d assigned, %d recovered", len(created), len(recovered)
            )

    # ------------------------------------------------------------------
    # Forced push
    # ------------------------------------------------------------------

    def _archive_overwritten(
        self, git: GitClient, local_tip: str, remote_tip: str, result: SyncResult
    ) -> str:
        """
        Archive every remote issue version a forced push will overwrite.

        Each becomes a ``full`` attic entry; the ID mapping is unioned so
        archived issues keep their short IDs.

        Returns:
            The new local tip (unchanged if nothing needed archiving).
        """
        local_tree = git.ls_tree(local_tip, DATA_SYNC_DIR)
        remote_tree = git.ls_tree(remote_tip, DATA_SYNC_DIR)
        archive = AtticArchive(self.manager.data_dir, clock=self.clock)
        now = self.clock()

        for path, remote_entry in sorted(remote_tree.items()):
            local_entry = local_tree.get(path)
            if not _is_issue_path(path) or self._same_blob(local_entry, remote_entry):
                continue
            remote_issue = decode_issue(git.cat_blob(remote_entry.sha), source=f"remote {path}")
            local_issue = (
                decode_issue(git.cat_blob(local_entry.sha), source=f"local {path}")
                if local_entry
                else remote_issue
            )
            entry = AtticEntry(
                entity_id=remote_issue.id,
                timestamp=now,
                field=FULL_ENTITY_FIELD,
                lost_value=issue_values(remote_issue),
                winner_source=Side.LOCAL,
                loser_source=Side.REMOTE,
                context=AtticContext(
                    local_version=local_issue.version,
                    remote_version=remote_issue.version,
                    local_updated_at=format_timestamp(local_issue.updated_at),
                    remote_updated_at=format_timestamp(remote_issue.updated_at),
                ),
            )
            result.attic_entries.append(archive.record(entry))

        remote_ids = remote_tree.get(IDS_TREE_PATH)
        local_ids = local_tree.get(IDS_TREE_PATH)
        if remote_ids is not None and not self._same_blob(local_ids, remote_ids):
            remote_mapping = parse_id_mapping(git.cat_blob(remote_ids.sha), source="remote ids.yml")
            data_dir = self.manager.data_dir
            save_id_mapping(data_dir, merge_id_mappings(load_id_mapping(data_dir), remote_mapping))

        if result.attic_entries:
            logger.warning(
                "Forced sync overwrites %d remote issue version(s); archived to attic",
                len(result.attic_entries),
            )
        committed = self._commit_worktree(
            git, [local_tip], "tbd: archive remote versions before forced push"
        )
        if committed is None:
            return local_tip
        result.commits.append(committed)
        return committed

    @staticmethod
    def _same_blob(a: TreeEntry | None, b: TreeEntry | None) -> bool:
        return (a.sha if a else None) == (b.sha if b else None)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self, *, fetch: bool = False) -> SyncStatusReport:
        """
        Report where the sync branch stands without changing it.

        Args:
            fetch: Refresh the remote-tracking ref first (touches only
                ``refs/remotes/<remote>/<branch>``).
        """
        git = self.manager.require_git()
        state = load_state(self.manager.project_root)
        report = SyncStatusReport(
            status=SyncStatus.UNINITIALIZED,
            branch=self.branch,
            remote=self.remote,
            last_sync_at=state.last_sync_at,
        )

        local_tip = git.rev_parse(self.manager.branch_ref)
        if local_tip is None:
            return report
        report.local_tip = local_tip

        if self.manager.check_health().is_valid:
            report.uncommitted = [
                line[3:] for line in git.status_porcelain(self.worktree_path)
            ]

        if not git.has_remote(self.remote):
            report.status = SyncStatus.NO_REMOTE
            return report

        if fetch:
            self._fetch(git)
        remote_tip = git.rev_parse(self.manager.remote_ref)
        if remote_tip is None:
            report.status = SyncStatus.NO_REMOTE
            return report
        report.remote_tip = remote_tip

        report.ahead, report.behind = git.ahead_behind(local_tip, remote_tip)
        if report.ahead and report.behind:
            report.status = SyncStatus.DIVERGED
        elif report.ahead:
            report.status = SyncStatus.AHEAD
        elif report.behind:
            report.status = SyncStatus.BEHIND
        else:
            report.status = SyncStatus.UP_TO_DATE
        return report
