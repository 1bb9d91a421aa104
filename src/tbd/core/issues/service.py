"""
Issue service: the write and read operations the CLI builds on.

Every operation works on a data directory resolved by the WorktreeManager.
Callers may pass either a display ID (``proj-a7k2``, ``a7k2``) or an
internal ID wherever an issue is named.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from tbd.core.attic.archive import AtticArchive
from tbd.core.attic.models import AtticEntry, AtticFilter
from tbd.core.errors import SchemaViolation, ValidationError
from tbd.core.ids.generator import new_internal_id
from tbd.core.ids.mapping import IdMapping
from tbd.core.issues.models import Issue, IssueKind, IssueStatus
from tbd.core.issues.store import IssueStore
from tbd.core.merge.engine import apply_close_coupling, issue_values
from tbd.core.merge.strategies import FIELD_STRATEGIES, MergeStrategy
from tbd.utils.timestamps import format_timestamp, utc_now

logger = logging.getLogger(__name__)

# Fields update() may change directly
UPDATABLE_FIELDS = frozenset(
    name
    for name, strategy in FIELD_STRATEGIES.items()
    if strategy
    not in (
        MergeStrategy.IMMUTABLE,
        MergeStrategy.INCREMENT,
        MergeStrategy.RECOMPUTE,
        MergeStrategy.EARLIEST,
    )
    and name not in ("closed_at",)
)


@dataclass
class IssueFilter:
    """Criteria for IssueService.list_issues(). Unset criteria match everything."""

    status: IssueStatus | None = None
    kind: IssueKind | None = None
    label: str | None = None
    assignee: str | None = None
    include_closed: bool = True


def _schema_error(error: PydanticValidationError, context: str) -> SchemaViolation:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return SchemaViolation(f"{context}: {first.get('msg')}", field=field or None)


class IssueService:
    """
    Create, update, close and query issues in one data directory.

    Example:
        >>> service = IssueService(data_dir, id_prefix="proj")
        >>> issue = service.create("Fix the login bug", kind=IssueKind.BUG)
        >>> service.display_id(issue)
        'proj-a7k2'
        >>> service.close("proj-a7k2", reason="fixed").status
        <IssueStatus.CLOSED: 'closed'>
    """

    def __init__(
        self,
        data_dir: Path,
        *,
        id_prefix: str,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.data_dir = data_dir
        self.id_prefix = id_prefix
        self.clock = clock
        self.store = IssueStore(data_dir)
        self.attic = AtticArchive(data_dir, clock=clock)
        self._mapping: IdMapping | None = None

    @property
    def mapping(self) -> IdMapping:
        if self._mapping is None:
            self._mapping = self.store.load_mapping()
        return self._mapping

    def resolve(self, ref: str) -> str:
        """Internal ID for a display or internal ID."""
        return self.mapping.resolve_display(ref, self.id_prefix)

    def display_id(self, issue: Issue | str) -> str:
        internal_id = issue.id if isinstance(issue, Issue) else issue
        return self.mapping.display_id(internal_id, self.id_prefix)

    def save_mapping(self) -> None:
        self.store.save_mapping(self.mapping)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        title: str,
        *,
        kind: IssueKind = IssueKind.TASK,
        priority: int = 2,
        description: str | None = None,
        notes: str | None = None,
        labels: list[str] | None = None,
        assignee: str | None = None,
        parent: str | None = None,
        blocks: list[str] | None = None,
        due_date: datetime | None = None,
        deferred_until: datetime | None = None,
        created_by: str | None = None,
        extensions: dict[str, Any] | None = None,
    ) -> Issue:
        """
        Create a new issue and give it a short ID.

        Args:
            title: Issue title
            kind: bug, feature, task, epic or chore
            priority: 0 (critical) to 4 (backlog)
            parent: Display or internal ID of the containing issue
            blocks: Display or internal IDs of issues this one blocks

        Returns:
            The stored issue

        Raises:
            SchemaViolation: If any field is invalid
            NotFound: If ``parent`` or a ``blocks`` target doesn't resolve
        """
        now = self.clock()
        data: dict[str, Any] = {
            "id": new_internal_id(),
            "title": title,
            "kind": kind,
            "priority": priority,
            "description": description,
            "notes": notes,
            "labels": sorted(set(labels or [])),
            "assignee": assignee,
            "parent_id": self.resolve(parent) if parent else None,
            "dependencies": [{"type": "blocks", "target": self.resolve(t)} for t in blocks or []],
            "due_date": due_date,
            "deferred_until": deferred_until,
            "created_at": now,
            "updated_at": now,
            "created_by": created_by,
            "extensions": extensions or {},
        }
        try:
            issue = Issue.model_validate(data)
        except PydanticValidationError as e:
            raise _schema_error(e, "Cannot create issue") from e

        return self.add(issue)

    def add(
        self, issue: Issue, *, short_id: str | None = None, save_mapping: bool = True
    ) -> Issue:
        """
        Store an already-built issue and bind its short ID.

        Used by create() and by importers, which may carry a short ID over
        from the system they import from. Importers adding many issues pass
        ``save_mapping=False`` and call ``save_mapping()`` once at the end.
        """
        mapping = self.mapping
        if short_id is not None:
            mapping.bind_display(short_id, issue.id)
        else:
            mapping.assign(issue.id)
        if save_mapping:
            self.save_mapping()
        self.store.save(issue)
        logger.info("Created %s (%s)", self.display_id(issue), issue.id)
        return issue

    def update(self, ref: str, **changes: Any) -> Issue:
        """
        Apply field changes to an issue.

        ``version`` is bumped and ``updated_at`` reset only if something
        actually changed. Setting ``status`` keeps ``closed_at`` consistent
        with it. ``parent`` is accepted as a display ID and stored as
        ``parent_id``.

        Raises:
            ValidationError: If a field cannot be updated
            SchemaViolation: If a new value is invalid
            NotFound: If the issue doesn't exist
        """
        issue_id = self.resolve(ref)
        current = self.store.load(issue_id)

        if "parent" in changes:
            parent = changes.pop("parent")
            changes["parent_id"] = self.resolve(parent) if parent else None

        unknown = sorted(set(changes) - UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(unknown)}")

        values = issue_values(current)
        values.update(changes)
        return self._write_version(current, values)

    def close(self, ref: str, reason: str | None = None) -> Issue:
        return self.update(ref, status=IssueStatus.CLOSED, close_reason=reason)

    def reopen(self, ref: str) -> Issue:
        return self.update(ref, status=IssueStatus.OPEN, close_reason=None)

    def add_labels(self, ref: str, labels: list[str]) -> Issue:
        current = self.get(ref)
        return self.update(current.id, labels=sorted(set(current.labels) | set(labels)))

    def remove_labels(self, ref: str, labels: list[str]) -> Issue:
        current = self.get(ref)
        return self.update(current.id, labels=[x for x in current.labels if x not in labels])

    def add_dependency(self, ref: str, blocks: str) -> Issue:
        """Record that ``ref`` blocks ``blocks``."""
        current = self.get(ref)
        target = self.resolve(blocks)
        if target == current.id:
            raise ValidationError("An issue cannot block itself")
        deps = [d.model_dump(mode="json") for d in current.dependencies if d.target != target]
        deps.append({"type": "blocks", "target": target})
        return self.update(current.id, dependencies=sorted(deps, key=lambda d: d["target"]))

    def remove_dependency(self, ref: str, blocks: str) -> Issue:
        current = self.get(ref)
        target = self.resolve(blocks)
        deps = [d.model_dump(mode="json") for d in current.dependencies if d.target != target]
        return self.update(current.id, dependencies=deps)

    def _write_version(self, current: Issue, values: dict[str, Any]) -> Issue:
        now = self.clock()
        values["updated_at"] = format_timestamp(now)
        values["version"] = current.version + 1
        apply_close_coupling(values, now)

        try:
            updated = Issue.model_validate(values)
        except PydanticValidationError as e:
            raise _schema_error(e, f"Cannot update {self.display_id(current)}") from e

        unchanged = {"version", "updated_at"}
        if updated.model_dump(exclude=unchanged) == current.model_dump(exclude=unchanged):
            logger.debug("No changes to %s", current.id)
            return current

        self.store.save(updated)
        logger.info("Updated %s to version %d", self.display_id(updated), updated.version)
        return updated

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, ref: str) -> Issue:
        return self.store.load(self.resolve(ref))

    def list_issues(self, criteria: IssueFilter | None = None) -> list[Issue]:
        """
        Issues matching ``criteria``, most urgent first.

        Ordering is priority, then creation time, then ID, so output is
        stable across machines.
        """
        criteria = criteria or IssueFilter()
        issues = []
        for issue in self.store.list_issues():
            if criteria.status is not None and issue.status is not criteria.status:
                continue
            if not criteria.include_closed and issue.is_closed:
                continue
            if criteria.kind is not None and issue.kind is not criteria.kind:
                continue
            if criteria.label is not None and criteria.label not in issue.labels:
                continue
            if criteria.assignee is not None and issue.assignee != criteria.assignee:
                continue
            issues.append(issue)
        issues.sort(key=lambda i: (i.priority, i.created_at, i.id))
        return issues

    # ------------------------------------------------------------------
    # Attic
    # ------------------------------------------------------------------

    def list_attic(
        self,
        ref: str | None = None,
        *,
        field: str | None = None,
        since: datetime | None = None,
    ) -> list[AtticEntry]:
        entity_id = self.resolve(ref) if ref else None
        return self.attic.list(AtticFilter(entity_id=entity_id, field=field, since=since))

    def get_attic(self, ref: str, timestamp: datetime | str) -> AtticEntry:
        return self.attic.get(self.resolve(ref), timestamp)

    def restore_attic(self, ref: str, timestamp: datetime | str) -> Issue:
        return self.attic.restore(self.resolve(ref), timestamp, self.store)
