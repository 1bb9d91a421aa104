"""
Attic archive.

Discarded values live under ``attic/<entity-id>/<timestamp>_<field>.yml``.
The timestamp-first file name makes a directory listing chronological and
an entity's history a single directory read. Entries are append-only;
restoring one writes a new issue version and archives whatever value the
restore overwrote.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from tbd.core.attic.models import (
    EXTENSIONS_FIELD_PREFIX,
    FULL_ENTITY_FIELD,
    AtticContext,
    AtticEntry,
    AtticFilter,
    Side,
)
from tbd.core.errors import NotFound, SchemaViolation, ValidationError
from tbd.core.issues.models import Issue
from tbd.core.issues.store import IssueStore
from tbd.core.merge.engine import apply_close_coupling, issue_values
from tbd.core.merge.strategies import FIELD_STRATEGIES, MergeStrategy
from tbd.core.paths import attic_dir
from tbd.utils.atomic import atomic_write_text
from tbd.utils.timestamps import format_timestamp, utc_now
from tbd.utils.yaml_io import dump_yaml, load_yaml

logger = logging.getLogger(__name__)

# Fields a restore may never write
_UNRESTORABLE = frozenset(
    name
    for name, strategy in FIELD_STRATEGIES.items()
    if strategy in (MergeStrategy.IMMUTABLE, MergeStrategy.INCREMENT, MergeStrategy.RECOMPUTE)
)

_NOT_FOUND_HINT = "Run 'tbd attic list' to see archived entries."


def _file_stamp(timestamp: datetime) -> str:
    """Filesystem-safe, sortable form of an attic timestamp."""
    return timestamp.astimezone(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")


def parse_attic_entry(text: str, *, source: str) -> AtticEntry:
    """
    Decode the YAML of one attic file.

    Raises:
        ValidationError: If the text is not a valid attic entry.
    """
    data = load_yaml(text, source=source)
    if not isinstance(data, dict):
        raise ValidationError(f"Invalid attic entry {source}")
    try:
        return AtticEntry.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid attic entry {source}: {e}") from e


def _coerce_timestamp(value: datetime | str) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class AtticArchive:
    """
    Read/write access to the attic of one data directory.

    Example:
        >>> archive = AtticArchive(data_dir)
        >>> archive.record(entry)
        >>> [e.field for e in archive.list(AtticFilter(entity_id=issue_id))]
        ['priority']
    """

    def __init__(self, data_dir: Path, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.data_dir = data_dir
        self.root = attic_dir(data_dir)
        self.clock = clock

    def _entity_dir(self, entity_id: str) -> Path:
        return self.root / entity_id

    def _find(self, entity_id: str, timestamp: datetime) -> Path | None:
        directory = self._entity_dir(entity_id)
        if not directory.is_dir():
            return None
        matches = sorted(directory.glob(f"{_file_stamp(timestamp)}_*.yml"))
        return matches[0] if matches else None

    def record(self, entry: AtticEntry) -> AtticEntry:
        """
        Persist an entry.

        If the entity already has an entry at the same timestamp, the
        timestamp is moved forward by a microsecond until it is unique.

        Returns:
            The entry as stored (possibly with an adjusted timestamp).
        """
        timestamp = entry.timestamp
        while self._find(entry.entity_id, timestamp) is not None:
            timestamp += timedelta(microseconds=1)
        if timestamp != entry.timestamp:
            entry = entry.model_copy(update={"timestamp": timestamp})

        path = self._entity_dir(entry.entity_id) / f"{_file_stamp(timestamp)}_{entry.field}.yml"
        atomic_write_text(path, dump_yaml(entry.to_dict()))
        logger.debug("Archived %s.%s to %s", entry.entity_id, entry.field, path.name)
        return entry

    def record_all(self, entries: list[AtticEntry]) -> list[AtticEntry]:
        return [self.record(entry) for entry in entries]

    def _load(self, path: Path) -> AtticEntry:
        return parse_attic_entry(path.read_text(encoding="utf-8"), source=str(path))

    def list(self, criteria: AtticFilter | None = None) -> list[AtticEntry]:
        """Entries matching ``criteria``, oldest first."""
        criteria = criteria or AtticFilter()
        if criteria.entity_id:
            directories = [self._entity_dir(criteria.entity_id)]
        elif self.root.is_dir():
            directories = sorted(p for p in self.root.iterdir() if p.is_dir())
        else:
            directories = []

        since = _coerce_timestamp(criteria.since) if criteria.since is not None else None
        entries: list[AtticEntry] = []
        for directory in directories:
            if not directory.is_dir():
                continue
            for path in sorted(directory.glob("*.yml")):
                try:
                    entry = self._load(path)
                except ValidationError as e:
                    logger.warning("Skipping unreadable attic entry: %s", e.message)
                    continue
                if criteria.field and entry.field != criteria.field:
                    continue
                if since is not None and entry.timestamp < since:
                    continue
                entries.append(entry)

        entries.sort(key=lambda e: (e.timestamp, e.entity_id, e.field))
        return entries

    def get(self, entity_id: str, timestamp: datetime | str) -> AtticEntry:
        """
        Raises:
            NotFound: If the entity has no entry at that timestamp.
        """
        try:
            when = _coerce_timestamp(timestamp)
        except ValueError as e:
            raise ValidationError(f"Invalid attic timestamp: {timestamp!r}") from e
        path = self._find(entity_id, when)
        if path is None:
            raise NotFound(
                f"No attic entry for {entity_id} at {timestamp}", hint=_NOT_FOUND_HINT
            )
        return self._load(path)

    def restore(
        self, entity_id: str, timestamp: datetime | str, store: IssueStore
    ) -> Issue:
        """
        Write an archived value back onto the current issue.

        The result is a new version of the issue. The value it replaces is
        itself archived, so repeated restores never lose anything.

        Raises:
            NotFound: If the entry or the issue doesn't exist.
            SchemaViolation: If the restored issue would be invalid.
            ValidationError: If the entry targets a field that cannot be restored.
        """
        entry = self.get(entity_id, timestamp)
        current = store.load(entity_id)
        now = self.clock()

        values = issue_values(current)
        restored, overwritten = self._apply(entry, values)

        restored["version"] = current.version + 1
        restored["updated_at"] = format_timestamp(now)
        apply_close_coupling(restored, now)

        try:
            issue = Issue.model_validate(restored)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or entry.field
            raise SchemaViolation(
                f"Restoring {entry.field} would make {entity_id} invalid: {first.get('msg')}",
                field=field,
            ) from e

        if overwritten != entry.lost_value:
            self.record(
                AtticEntry(
                    entity_id=entity_id,
                    timestamp=now,
                    field=entry.field,
                    lost_value=overwritten,
                    winner_source=Side.LOCAL,
                    loser_source=Side.LOCAL,
                    context=AtticContext(
                        local_version=current.version,
                        remote_version=current.version,
                        local_updated_at=format_timestamp(current.updated_at),
                        remote_updated_at=format_timestamp(current.updated_at),
                    ),
                )
            )

        store.save(issue)
        logger.info("Restored %s.%s from attic (version %d)", entity_id, entry.field, issue.version)
        return issue

    @staticmethod
    def _apply(entry: AtticEntry, values: dict[str, Any]) -> tuple[dict[str, Any], Any]:
        """Return (new values, value being overwritten)."""
        restored = dict(values)

        if entry.field == FULL_ENTITY_FIELD:
            if not isinstance(entry.lost_value, dict):
                raise ValidationError("Full-entity attic entry does not hold an issue")
            restored.update(entry.lost_value)
            restored["id"] = values["id"]
            restored["type"] = values["type"]
            return restored, values

        if entry.field.startswith(EXTENSIONS_FIELD_PREFIX):
            namespace = entry.field[len(EXTENSIONS_FIELD_PREFIX) :]
            extensions = dict(values.get("extensions") or {})
            overwritten = extensions.get(namespace)
            if entry.lost_value is None:
                extensions.pop(namespace, None)
            else:
                extensions[namespace] = entry.lost_value
            restored["extensions"] = extensions
            return restored, overwritten

        if entry.field not in FIELD_STRATEGIES or entry.field in _UNRESTORABLE:
            raise ValidationError(f"Field '{entry.field}' cannot be restored")

        restored[entry.field] = entry.lost_value
        return restored, values[entry.field]


__all__ = ["AtticArchive", "parse_attic_entry"]
