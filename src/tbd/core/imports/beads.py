"""
Beads import.

Translates Beads issues (one JSON object per line, as written by
``bd export`` to ``.beads/issues.jsonl``) into tbd issues.

The short ID of a Beads issue is carried over from its ID suffix, so
``proj-100`` is reachable as ``<prefix>-100`` afterwards and references in
commit messages keep resolving. The original ID is kept in
``extensions.beads.original_id``; importing the same record again merges
it into the existing issue through the merge engine, exactly like a sync.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from tbd.core.errors import NotFound, ValidationError
from tbd.core.ids.generator import extract_short_id, is_short_id, new_internal_id
from tbd.core.issues.models import Issue, IssueKind, IssueStatus
from tbd.core.issues.service import IssueService
from tbd.core.merge.engine import MergeEngine
from tbd.utils.timestamps import parse_timestamp, utc_now

logger = logging.getLogger(__name__)

BEADS_NAMESPACE = "beads"
DEFAULT_BEADS_FILE = Path(".beads") / "issues.jsonl"

_STATUS_MAP = {
    "open": IssueStatus.OPEN,
    "in_progress": IssueStatus.IN_PROGRESS,
    "blocked": IssueStatus.BLOCKED,
    "deferred": IssueStatus.DEFERRED,
    "done": IssueStatus.CLOSED,
    "closed": IssueStatus.CLOSED,
    "tombstone": IssueStatus.CLOSED,
}

_PRIORITY_RE = re.compile(r"^[Pp]?(\d)$")


@dataclass
class ImportResult:
    """Outcome of an import run."""

    imported: int = 0
    merged: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    attic_entries: int = 0
    id_map: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.imported + self.merged + self.skipped + len(self.errors)

    def summary(self) -> str:
        parts = [f"{self.imported} imported", f"{self.merged} merged", f"{self.skipped} unchanged"]
        if self.attic_entries:
            parts.append(f"{self.attic_entries} value(s) archived to attic")
        if self.errors:
            parts.append(f"{len(self.errors)} failed")
        return ", ".join(parts)


def map_status(value: Any) -> IssueStatus:
    """Beads status to tbd status; unknown values become open."""
    return _STATUS_MAP.get(str(value or "open").lower(), IssueStatus.OPEN)


def map_kind(value: Any) -> IssueKind:
    try:
        return IssueKind(str(value or "task").lower())
    except ValueError:
        return IssueKind.TASK


def map_priority(value: Any) -> int:
    """Accepts 0-4, "2" or "P2"; anything else becomes 2."""
    if isinstance(value, bool):
        return 2
    if isinstance(value, int):
        return value if 0 <= value <= 4 else 2
    if isinstance(value, str):
        match = _PRIORITY_RE.match(value.strip())
        if match and 0 <= int(match.group(1)) <= 4:
            return int(match.group(1))
    return 2


def _timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring unparseable timestamp %r", value)
        return None


def parse_beads_jsonl(text: str, *, source: str = "issues.jsonl") -> list[dict[str, Any]]:
    """
    Parse Beads JSONL. Lines that aren't JSON objects with an ``id`` and a
    ``title`` are skipped with a warning.
    """
    records: list[dict[str, Any]] = []
    for number, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning("%s:%d: skipping invalid JSON (%s)", source, number, e.msg)
            continue
        if not isinstance(record, dict) or not record.get("id") or not record.get("title"):
            logger.warning("%s:%d: skipping record without id and title", source, number)
            continue
        records.append(record)
    return records


def load_beads_jsonl(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        raise NotFound(
            f"Beads export not found: {path}",
            hint="Run 'bd export' in the Beads project, or pass the path to issues.jsonl.",
        )
    return parse_beads_jsonl(path.read_text(encoding="utf-8"), source=str(path))


class BeadsImporter:
    """
    Imports Beads records into an IssueService's data directory.

    Example:
        >>> importer = BeadsImporter(service)
        >>> result = importer.import_records([{"id": "proj-100", "title": "Fix it",
        ...                                     "status": "open"}])
        >>> service.display_id(result.id_map["proj-100"])
        'proj-100'
    """

    def __init__(
        self,
        service: IssueService,
        *,
        engine: MergeEngine | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.service = service
        self.clock = clock
        self.engine = engine or MergeEngine(clock=clock)

    def import_records(self, records: Iterable[dict[str, Any]]) -> ImportResult:
        records = list(records)
        result = ImportResult()
        existing = self._existing_by_original_id()
        mapping = self.service.mapping

        # First pass: decide the internal ID (and short ID) of every record so
        # dependencies and parents can be translated in the second pass.
        planned_short: dict[str, str | None] = {}
        claimed: set[str] = set()
        for record in records:
            beads_id = str(record["id"])
            if beads_id in existing:
                result.id_map[beads_id] = existing[beads_id].id
                continue

            short_id = extract_short_id(beads_id)
            internal_id = new_internal_id()
            result.id_map[beads_id] = internal_id
            if is_short_id(short_id) and short_id not in mapping and short_id not in claimed:
                planned_short[internal_id] = short_id
                claimed.add(short_id)
            else:
                logger.warning("Short ID of %s is taken; a new one will be generated", beads_id)
                planned_short[internal_id] = None

        blocks = self._collect_reverse_dependencies(records, result.id_map)

        for record in records:
            beads_id = str(record["id"])
            try:
                issue = self.convert(record, result.id_map, blocks.get(beads_id, []))
            except ValidationError as e:
                result.errors.append(f"{beads_id}: {e.message}")
                logger.warning("Skipping %s: %s", beads_id, e.message)
                continue

            current = self._load_current(issue.id)
            if current is None:
                self.service.add(issue, short_id=planned_short.get(issue.id), save_mapping=False)
                result.imported += 1
                continue

            outcome = self.engine.merge_entity(current, issue)
            ignored = {"version", "updated_at"}
            if outcome.merged.model_dump(exclude=ignored) == current.model_dump(exclude=ignored):
                result.skipped += 1
                continue
            self.service.store.save(outcome.merged)
            result.attic_entries += len(self.service.attic.record_all(outcome.attic_entries))
            result.merged += 1

        self.service.save_mapping()
        logger.info("Beads import: %s", result.summary())
        return result

    def import_file(self, path: Path) -> ImportResult:
        return self.import_records(load_beads_jsonl(path))

    def convert(
        self,
        record: dict[str, Any],
        id_map: dict[str, str],
        extra_blocks: list[str] | None = None,
    ) -> Issue:
        """
        Translate one Beads record.

        Raises:
            ValidationError: If the translated issue is invalid.
        """
        beads_id = str(record["id"])
        now = self.clock()

        targets: set[str] = set(extra_blocks or [])
        parent_id = id_map.get(str(record["parent"])) if record.get("parent") else None
        for dep in record.get("dependencies") or []:
            if not isinstance(dep, dict):
                continue
            dep_type = dep.get("type", "blocks")
            if "target" in dep and dep_type == "blocks":
                target = id_map.get(str(dep["target"]))
                if target:
                    targets.add(target)
            elif dep_type == "parent-child" and dep.get("depends_on_id") and parent_id is None:
                parent_id = id_map.get(str(dep["depends_on_id"]))

        notes = record.get("notes") or None
        design = record.get("design")
        if design:
            notes = f"{notes}\n\n## Design\n\n{design}" if notes else f"## Design\n\n{design}"

        status = map_status(record.get("status"))
        closed_at = _timestamp(record.get("closed_at"))
        if status is IssueStatus.CLOSED and closed_at is None:
            closed_at = _timestamp(record.get("updated_at")) or now

        data = {
            "id": id_map[beads_id],
            "title": record.get("title"),
            "description": record.get("description") or None,
            "notes": notes,
            "kind": map_kind(record.get("issue_type") or record.get("type")),
            "status": status,
            "priority": map_priority(record.get("priority")),
            "assignee": record.get("assignee") or None,
            "labels": sorted(set(record.get("labels") or [])),
            "dependencies": [
                {"type": "blocks", "target": target}
                for target in sorted(targets)
                if target != id_map[beads_id]
            ],
            "parent_id": parent_id if parent_id != id_map[beads_id] else None,
            "created_at": _timestamp(record.get("created_at")) or now,
            "updated_at": _timestamp(record.get("updated_at")) or now,
            "created_by": record.get("created_by") or None,
            "closed_at": closed_at if status is IssueStatus.CLOSED else None,
            "close_reason": record.get("close_reason") or None,
            "due_date": _timestamp(record.get("due")),
            "deferred_until": _timestamp(record.get("defer")),
            "extensions": {BEADS_NAMESPACE: {"original_id": beads_id}},
        }
        try:
            return Issue.model_validate(data)
        except PydanticValidationError as e:
            first = e.errors()[0]
            loc = ".".join(str(part) for part in first.get("loc", ()))
            raise ValidationError(f"invalid {loc}: {first.get('msg')}") from e

    def _existing_by_original_id(self) -> dict[str, Issue]:
        found: dict[str, Issue] = {}
        for issue in self.service.store.list_issues():
            beads = issue.extensions.get(BEADS_NAMESPACE)
            if isinstance(beads, dict) and beads.get("original_id"):
                found[str(beads["original_id"])] = issue
        return found

    def _load_current(self, issue_id: str) -> Issue | None:
        if not self.service.store.exists(issue_id):
            return None
        return self.service.store.load(issue_id)

    @staticmethod
    def _collect_reverse_dependencies(
        records: list[dict[str, Any]], id_map: dict[str, str]
    ) -> dict[str, list[str]]:
        """
        Beads exports ``{issue_id, depends_on_id, type: blocks}``: the
        ``depends_on_id`` issue blocks ``issue_id``. tbd stores that relation
        on the blocking issue.
        """
        blocks: dict[str, list[str]] = {}
        for record in records:
            for dep in record.get("dependencies") or []:
                if not isinstance(dep, dict) or dep.get("type", "blocks") != "blocks":
                    continue
                blocker = dep.get("depends_on_id")
                blocked = dep.get("issue_id") or record["id"]
                if not blocker or str(blocked) not in id_map:
                    continue
                blocks.setdefault(str(blocker), []).append(id_map[str(blocked)])
        return blocks


def import_beads(
    records: Iterable[dict[str, Any]],
    service: IssueService,
    *,
    clock: Callable[[], datetime] = utc_now,
) -> ImportResult:
    """Import Beads records into ``service``'s data directory."""
    return BeadsImporter(service, clock=clock).import_records(records)


def import_beads_file(
    path: Path,
    service: IssueService,
    *,
    clock: Callable[[], datetime] = utc_now,
) -> ImportResult:
    return BeadsImporter(service, clock=clock).import_file(path)


__all__ = [
    "BEADS_NAMESPACE",
    "DEFAULT_BEADS_FILE",
    "BeadsImporter",
    "ImportResult",
    "import_beads",
    "import_beads_file",
    "load_beads_jsonl",
    "map_kind",
    "map_priority",
    "map_status",
    "parse_beads_jsonl",
]
