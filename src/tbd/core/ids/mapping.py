"""
Short ID to internal ID mapping.

The mapping lives in ``mappings/ids.yml`` on the sync branch, one
``short: ulid`` entry per line, naturally sorted. Entries are write-once:
a short ID, once bound, never points anywhere else. That makes the file
mergeable by plain set union across machines.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import yaml

from tbd.core.errors import AlreadyBound, NotFound, TbdError, ValidationError
from tbd.core.ids.generator import (
    extract_short_id,
    is_internal_id,
    is_short_id,
    is_ulid,
    make_internal_id,
    new_short_id,
    ulid_from_internal_id,
)
from tbd.core.paths import ids_mapping_path
from tbd.utils.atomic import atomic_write_text
from tbd.utils.yaml_io import CONFLICT_HINT, has_conflict_markers

logger = logging.getLogger(__name__)

# Short IDs grow by one character once the project has this many issues
LONGER_SHORT_ID_THRESHOLD = 50_000
ATTEMPTS_PER_LENGTH = 10


class _DuplicateTolerantLoader(yaml.SafeLoader):
    """SafeLoader that keeps the first value of a repeated mapping key."""

    duplicate_keys: list[str]


def _construct_mapping(loader: _DuplicateTolerantLoader, node: yaml.MappingNode) -> dict[Any, Any]:
    loader.flatten_mapping(node)
    result: dict[Any, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=True)
        if key in result:
            loader.duplicate_keys.append(str(key))
            continue
        result[key] = loader.construct_object(value_node, deep=True)
    return result


_DuplicateTolerantLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_mapping
)


def natural_sort_key(value: str) -> list[tuple[int, int | str]]:
    """Sort key placing ``2`` before ``10`` and numbers before letters."""
    return [
        (0, int(part)) if part.isdigit() else (1, part)
        for part in re.split(r"(\d+)", value)
        if part
    ]


class IdMapping:
    """
    Bidirectional short ID <-> ULID table.

    Internal IDs are stored without their ``is-`` prefix, as in the file.
    """

    def __init__(self, entries: dict[str, str] | None = None, *, prefix: str = "is") -> None:
        self.prefix = prefix
        self._short_to_ulid: dict[str, str] = {}
        self._ulid_to_short: dict[str, str] = {}
        for short_id, ulid in (entries or {}).items():
            self._add(short_id, ulid)

    def __len__(self) -> int:
        return len(self._short_to_ulid)

    def __contains__(self, short_id: object) -> bool:
        return short_id in self._short_to_ulid

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IdMapping):
            return NotImplemented
        return self._short_to_ulid == other._short_to_ulid

    def _add(self, short_id: str, ulid: str) -> None:
        self._short_to_ulid[short_id] = ulid
        self._ulid_to_short[ulid] = short_id

    def entries(self) -> dict[str, str]:
        """Entries in natural short-ID order."""
        return {
            key: self._short_to_ulid[key]
            for key in sorted(self._short_to_ulid, key=natural_sort_key)
        }

    def short_id_for(self, internal_id: str) -> str | None:
        return self._ulid_to_short.get(ulid_from_internal_id(internal_id))

    def internal_id_for(self, short_id: str) -> str | None:
        ulid = self._short_to_ulid.get(short_id)
        return make_internal_id(ulid, self.prefix) if ulid else None

    def display_id(self, internal_id: str, id_prefix: str) -> str:
        """``proj-a7k2`` for a mapped issue, the internal ID otherwise."""
        short_id = self.short_id_for(internal_id)
        return f"{id_prefix}-{short_id}" if short_id else internal_id

    def optimal_length(self) -> int:
        return 4 if len(self) < LONGER_SHORT_ID_THRESHOLD else 5

    def generate_unique_short_id(self) -> str:
        """
        Generate a short ID not yet present in this mapping.

        Tries the optimal length, then one character longer.

        Raises:
            TbdError: If every attempt collided (practically unreachable).
        """
        length = self.optimal_length()
        for candidate_length in (length, length + 1):
            for _ in range(ATTEMPTS_PER_LENGTH):
                short_id = new_short_id(candidate_length)
                if short_id not in self._short_to_ulid:
                    return short_id
        raise TbdError(
            f"Failed to generate a unique short ID after {2 * ATTEMPTS_PER_LENGTH} "
            f"attempts with {len(self)} existing IDs",
            hint="Retry the command.",
        )

    def bind_display(self, short_id: str, internal_id: str) -> None:
        """
        Register a permanent short ID for an internal ID.

        Binding the same pair again is a no-op.

        Raises:
            ValidationError: If either ID is malformed.
            AlreadyBound: If the short ID points at a different issue, or the
                issue already has a different short ID.
        """
        if not is_short_id(short_id):
            raise ValidationError(f"Invalid short ID: {short_id!r}")
        if not is_internal_id(internal_id):
            raise ValidationError(f"Invalid internal ID: {internal_id!r}")

        ulid = ulid_from_internal_id(internal_id)
        existing = self._short_to_ulid.get(short_id)
        if existing is not None:
            if existing == ulid:
                return
            raise AlreadyBound(short_id, make_internal_id(existing, self.prefix), internal_id)

        current_short = self._ulid_to_short.get(ulid)
        if current_short is not None:
            raise AlreadyBound(current_short, internal_id, internal_id)

        self._add(short_id, ulid)

    def assign(self, internal_id: str) -> str:
        """Return the issue's short ID, binding a fresh one if it has none."""
        existing = self.short_id_for(internal_id)
        if existing:
            return existing
        short_id = self.generate_unique_short_id()
        self.bind_display(short_id, internal_id)
        return short_id

    def resolve_display(self, text: str, id_prefix: str | None = None) -> str:
        """
        Resolve user input to an internal ID.

        Accepts ``proj-a7k2``, ``a7k2``, a full internal ID, or a bare ULID.
        The full short code must be given; prefixes of it never match.
        With ``id_prefix``, a display prefix other than it is rejected.

        Raises:
            NotFound: If the short code is not in the mapping, or the
                display prefix is not ``id_prefix``.
        """
        lowered = text.strip().lower()
        if is_internal_id(lowered):
            return lowered

        short_id = extract_short_id(lowered)
        if (
            id_prefix is not None
            and short_id != lowered
            and lowered != f"{id_prefix.lower()}-{short_id}"
        ):
            raise NotFound(
                f"Unknown issue ID: {text}",
                hint=f"Issue IDs in this project start with '{id_prefix}-'; run 'tbd list'.",
            )
        if is_ulid(short_id):
            return make_internal_id(short_id, self.prefix)

        internal_id = self.internal_id_for(short_id)
        if internal_id is None:
            raise NotFound(f"Unknown issue ID: {text}")
        return internal_id

    def copy(self) -> IdMapping:
        return IdMapping(dict(self._short_to_ulid), prefix=self.prefix)


def merge_id_mappings(local: IdMapping, remote: IdMapping) -> IdMapping:
    """
    Union of two mappings keyed by short ID.

    Entries are write-once, so a real conflict means a corrupted file; the
    local entry is kept and the discrepancy logged.
    """
    merged = local.copy()
    for short_id, ulid in remote.entries().items():
        existing = merged._short_to_ulid.get(short_id)
        if existing is None:
            if ulid in merged._ulid_to_short:
                logger.warning(
                    "Issue %s has short IDs '%s' (local) and '%s' (remote); keeping local",
                    ulid,
                    merged._ulid_to_short[ulid],
                    short_id,
                )
                continue
            merged._add(short_id, ulid)
        elif existing != ulid:
            logger.warning(
                "Short ID '%s' maps to %s locally and %s remotely; keeping local",
                short_id,
                existing,
                ulid,
            )
    return merged


def parse_id_mapping(text: str, *, source: str = "ids.yml") -> IdMapping:
    """
    Parse ids.yml text, tolerating duplicate keys left by a textual merge.

    Raises:
        ValidationError: On conflict markers, bad YAML or malformed entries.
    """
    if has_conflict_markers(text):
        raise ValidationError(f"Merge conflict markers in {source}", hint=CONFLICT_HINT)

    loader = _DuplicateTolerantLoader(text)
    loader.duplicate_keys = []
    try:
        data = loader.get_single_data()
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML in {source}: {e}") from e
    finally:
        loader.dispose()

    if loader.duplicate_keys:
        logger.warning(
            "%s contains %d duplicate key(s): %s. Keeping the first; "
            "the file is rewritten on next save.",
            source,
            len(loader.duplicate_keys),
            ", ".join(loader.duplicate_keys),
        )

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError(f"Invalid ID mapping format in {source}: expected a mapping")

    entries: dict[str, str] = {}
    for key, value in data.items():
        short_id = str(key)
        if not is_short_id(short_id) or not isinstance(value, str) or not is_ulid(value):
            raise ValidationError(
                f"Invalid ID mapping entry in {source}: {short_id!r}: {value!r}"
            )
        entries[short_id] = value
    return IdMapping(entries)


def format_id_mapping(mapping: IdMapping) -> str:
    """Render ids.yml: one line per entry, natural order."""
    return yaml.safe_dump(
        mapping.entries(), sort_keys=False, default_flow_style=False, width=2**31 - 1
    )


def load_id_mapping(data_dir: Path) -> IdMapping:
    path = ids_mapping_path(data_dir)
    if not path.exists():
        return IdMapping()
    return parse_id_mapping(path.read_text(encoding="utf-8"), source=str(path))


def save_id_mapping(data_dir: Path, mapping: IdMapping) -> None:
    atomic_write_text(ids_mapping_path(data_dir), format_id_mapping(mapping))


def reconcile_mappings(
    internal_ids: list[str],
    mapping: IdMapping,
    historical: IdMapping | None = None,
) -> tuple[list[str], list[str]]:
    """
    Give every issue without a short ID one.

    The historical mapping (e.g. the remote's) is consulted first so an
    issue whose entry was lost gets its original short ID back.

    Returns:
        (created, recovered) lists of internal IDs.
    """
    created: list[str] = []
    recovered: list[str] = []
    for internal_id in internal_ids:
        if mapping.short_id_for(internal_id):
            continue
        previous = historical.short_id_for(internal_id) if historical else None
        if previous and previous not in mapping:
            mapping.bind_display(previous, internal_id)
            recovered.append(internal_id)
        else:
            mapping.assign(internal_id)
            created.append(internal_id)
    return created, recovered
