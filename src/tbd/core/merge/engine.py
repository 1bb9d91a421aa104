"""
Field-level merge of two versions of the same issue.

The winner of every last-write-wins field is the side with the later
``updated_at``; an exact tie goes to the remote side (or, with
``prefer_remote_on_tie=False``, to the side with the greater content hash,
which gives the same answer whichever replica runs the merge). Every value
a merge throws away is returned as an AtticEntry; values that survive in a
union never are.

When the common ancestor is known it is passed as ``base``: a field that
only one side changed then takes that side's value outright, so edits to
different fields on two machines all survive.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from tbd.core.attic.models import (
    EXTENSIONS_FIELD_PREFIX,
    AtticContext,
    AtticEntry,
    Side,
)
from tbd.core.errors import MergeImmutableConflict, SchemaViolation
from tbd.core.issues.codec import content_hash
from tbd.core.issues.models import Issue, IssueStatus
from tbd.core.merge.strategies import (
    ARCHIVING_STRATEGIES,
    FIELD_STRATEGIES,
    MergeStrategy,
    deep_merge_lww,
    increment,
    merge_by_key,
    union_sorted,
)
from tbd.utils.timestamps import format_timestamp, utc_now

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class MergeOutcome:
    """Result of merging two versions of an issue."""

    merged: Issue
    attic_entries: list[AtticEntry] = field(default_factory=list)
    winner: Side = Side.REMOTE

    @property
    def lost_fields(self) -> list[str]:
        return [entry.field for entry in self.attic_entries]


def issue_values(issue: Issue) -> dict[str, Any]:
    """All fields of an issue as plain YAML-compatible values."""
    data = issue.to_metadata()
    data["description"] = issue.description
    data["notes"] = issue.notes
    return data


def apply_close_coupling(values: dict[str, Any], now: datetime) -> None:
    """A closed issue always has closed_at; any other status never does."""
    if values["status"] == IssueStatus.CLOSED.value:
        if values["closed_at"] is None:
            values["closed_at"] = format_timestamp(now)
    else:
        values["closed_at"] = None


def _contains(container: Any, value: Any) -> bool:
    """True if every leaf of ``value`` survives unchanged in ``container``."""
    if isinstance(container, dict) and isinstance(value, dict):
        return all(key in container and _contains(container[key], v) for key, v in value.items())
    return bool(container == value)


class MergeEngine:
    """
    Merges divergent issue versions field by field.

    Example:
        >>> engine = MergeEngine()
        >>> outcome = engine.merge_entity(local, remote)
        >>> outcome.merged.priority
        3
        >>> [e.field for e in outcome.attic_entries]
        ['priority']
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = utc_now,
        prefer_remote_on_tie: bool = True,
    ) -> None:
        self.clock = clock
        self.prefer_remote_on_tie = prefer_remote_on_tie

    def pick_winner(self, local: Issue, remote: Issue) -> Side:
        if local.updated_at > remote.updated_at:
            return Side.LOCAL
        if remote.updated_at > local.updated_at:
            return Side.REMOTE
        if self.prefer_remote_on_tie:
            return Side.REMOTE
        return Side.LOCAL if content_hash(local) > content_hash(remote) else Side.REMOTE

    def merge_entity(
        self, local: Issue, remote: Issue, base: Issue | None = None
    ) -> MergeOutcome:
        """
        Merge two versions of one issue.

        Raises:
            MergeImmutableConflict: If ``id`` or ``type`` differ.
        """
        for name in ("type", "id"):
            if getattr(local, name) != getattr(remote, name):
                raise MergeImmutableConflict(
                    local.id, name, getattr(local, name), getattr(remote, name)
                )

        now = self.clock()
        winner_side = self.pick_winner(local, remote)
        loser_side = Side.LOCAL if winner_side is Side.REMOTE else Side.REMOTE

        values = {Side.LOCAL: issue_values(local), Side.REMOTE: issue_values(remote)}
        base_values = issue_values(base) if base is not None else None
        context = AtticContext(
            local_version=local.version,
            remote_version=remote.version,
            local_updated_at=format_timestamp(local.updated_at),
            remote_updated_at=format_timestamp(remote.updated_at),
        )
        entries: list[AtticEntry] = []

        def archive(field_name: str, lost_value: Any) -> None:
            entries.append(
                AtticEntry(
                    entity_id=local.id,
                    timestamp=now,
                    field=field_name,
                    lost_value=lost_value,
                    winner_source=winner_side,
                    loser_source=loser_side,
                    context=context,
                )
            )

        merged: dict[str, Any] = {}
        for name, strategy in FIELD_STRATEGIES.items():
            local_value = values[Side.LOCAL][name]
            remote_value = values[Side.REMOTE][name]
            winner_value = values[winner_side][name]
            loser_value = values[loser_side][name]

            if strategy is MergeStrategy.IMMUTABLE:
                merged[name] = local_value
            elif strategy is MergeStrategy.INCREMENT:
                merged[name] = increment(local_value, remote_value)
            elif strategy is MergeStrategy.RECOMPUTE:
                merged[name] = format_timestamp(now)
            elif strategy is MergeStrategy.EARLIEST:
                continue
            elif local_value == remote_value:
                merged[name] = local_value
            elif base_values is not None and local_value == base_values[name]:
                merged[name] = remote_value
            elif base_values is not None and remote_value == base_values[name]:
                merged[name] = local_value
            elif strategy in ARCHIVING_STRATEGIES:
                merged[name] = winner_value
                archive(name, loser_value)
            elif strategy is MergeStrategy.UNION:
                merged[name] = union_sorted(local_value, remote_value)
            elif strategy is MergeStrategy.MERGE_BY_KEY:
                merged[name] = merge_by_key(winner_value, loser_value)
            elif strategy is MergeStrategy.DEEP_MERGE_NAMESPACES:
                merged[name] = self._merge_extensions(
                    values[winner_side][name],
                    values[loser_side][name],
                    base_values[name] if base_values is not None else None,
                    archive,
                )

        self._merge_creation(merged, values[Side.LOCAL], values[Side.REMOTE])
        apply_close_coupling(merged, now)

        try:
            result = Issue.model_validate(merged)
        except PydanticValidationError as e:
            raise SchemaViolation(f"Merged issue {local.id} is invalid: {e}") from e

        if entries:
            logger.info(
                "Merged %s: %s side won, archived %s",
                local.id,
                winner_side.value,
                ", ".join(entry.field for entry in entries),
            )
        return MergeOutcome(merged=result, attic_entries=entries, winner=winner_side)

    def _merge_extensions(
        self,
        winner: dict[str, Any],
        loser: dict[str, Any],
        base: dict[str, Any] | None,
        archive: Callable[[str, Any], None],
    ) -> dict[str, Any]:
        """Union namespaces; resolve each namespace present on both sides recursively."""
        result: dict[str, Any] = {}
        for namespace in sorted(set(winner) | set(loser)):
            won = winner.get(namespace, _MISSING)
            lost = loser.get(namespace, _MISSING)
            base_value = base.get(namespace, _MISSING) if base is not None else _MISSING

            if lost is _MISSING or won == lost:
                result[namespace] = won
            elif won is _MISSING:
                result[namespace] = lost
            elif base_value is not _MISSING and won == base_value:
                result[namespace] = lost
            elif base_value is not _MISSING and lost == base_value:
                result[namespace] = won
            else:
                combined = deep_merge_lww(won, lost)
                result[namespace] = combined
                if not _contains(combined, lost):
                    archive(f"{EXTENSIONS_FIELD_PREFIX}{namespace}", lost)
        return result

    @staticmethod
    def _merge_creation(
        merged: dict[str, Any], local: dict[str, Any], remote: dict[str, Any]
    ) -> None:
        """Earliest creation wins; the creator comes from the same side."""
        if local["created_at"] < remote["created_at"]:
            earliest = local
        elif remote["created_at"] < local["created_at"]:
            earliest = remote
        else:
            earliest = None

        if earliest is not None:
            merged["created_at"] = earliest["created_at"]
            merged["created_by"] = earliest["created_by"]
        else:
            merged["created_at"] = local["created_at"]
            creators = sorted(c for c in (local["created_by"], remote["created_by"]) if c)
            merged["created_by"] = creators[0] if creators else None
