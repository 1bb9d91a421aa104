"""
File-backed issue storage.

An IssueStore reads and writes issue files inside one data directory
(normally the sync worktree's ``.tbd/data-sync``). It knows nothing about
git: committing and pushing is the sync engine's job.
"""

from __future__ import annotations

import logging
from pathlib import Path

from tbd.core.errors import NotFound, ValidationError
from tbd.core.ids.mapping import IdMapping, load_id_mapping, save_id_mapping
from tbd.core.issues.codec import decode_issue, encode_issue
from tbd.core.issues.models import Issue
from tbd.core.paths import ISSUES_DIR_NAME, issue_path
from tbd.utils.atomic import atomic_write_text, sweep_orphaned_temp_files

logger = logging.getLogger(__name__)


class IssueStore:
    """
    Issue files under ``<data_dir>/issues/``.

    Example:
        >>> store = IssueStore(data_dir)
        >>> store.save(issue)
        >>> store.load(issue.id).title
        'Fix the login bug'
    """

    def __init__(self, data_dir: Path, *, sweep: bool = True) -> None:
        self.data_dir = data_dir
        self.issues_dir = data_dir / ISSUES_DIR_NAME
        if sweep:
            sweep_orphaned_temp_files(data_dir)

    def path_for(self, issue_id: str) -> Path:
        return issue_path(self.data_dir, issue_id)

    def exists(self, issue_id: str) -> bool:
        return self.path_for(issue_id).exists()

    def load(self, issue_id: str) -> Issue:
        """
        Raises:
            NotFound: If there is no file for the ID.
            SchemaViolation: If the file is malformed.
        """
        path = self.path_for(issue_id)
        if not path.exists():
            raise NotFound(f"Issue not found: {issue_id}")
        return decode_issue(path.read_text(encoding="utf-8"), source=str(path))

    def save(self, issue: Issue) -> Path:
        path = self.path_for(issue.id)
        atomic_write_text(path, encode_issue(issue))
        logger.debug("Wrote %s (version %d)", path.name, issue.version)
        return path

    def list_ids(self) -> list[str]:
        if not self.issues_dir.exists():
            return []
        return sorted(p.stem for p in self.issues_dir.glob("*.md"))

    def list_issues(self) -> list[Issue]:
        """
        Load every issue file. Files that fail to decode are skipped with
        a warning so one bad file cannot hide the rest.
        """
        issues: list[Issue] = []
        for issue_id in self.list_ids():
            try:
                issues.append(self.load(issue_id))
            except ValidationError as e:
                logger.warning("Skipping invalid issue file %s: %s", issue_id, e.message)
        return issues

    def load_mapping(self) -> IdMapping:
        return load_id_mapping(self.data_dir)

    def save_mapping(self, mapping: IdMapping) -> None:
        save_id_mapping(self.data_dir, mapping)
