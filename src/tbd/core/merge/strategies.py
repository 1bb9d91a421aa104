"""
Per-field merge strategies.

FIELD_STRATEGIES is the authoritative table of how every Issue field is
reconciled when two replicas changed the same issue.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class MergeStrategy(str, Enum):
    IMMUTABLE = "immutable"
    LWW = "lww"
    LWW_ARCHIVE = "lww_archive"
    UNION = "union"
    MERGE_BY_KEY = "merge_by_key"
    INCREMENT = "increment"
    EARLIEST = "earliest"
    RECOMPUTE = "recompute"
    DEEP_MERGE_NAMESPACES = "deep_merge_namespaces"


FIELD_STRATEGIES: dict[str, MergeStrategy] = {
    "type": MergeStrategy.IMMUTABLE,
    "id": MergeStrategy.IMMUTABLE,
    "version": MergeStrategy.INCREMENT,
    "title": MergeStrategy.LWW,
    "description": MergeStrategy.LWW_ARCHIVE,
    "notes": MergeStrategy.LWW_ARCHIVE,
    "kind": MergeStrategy.LWW,
    "status": MergeStrategy.LWW,
    "priority": MergeStrategy.LWW,
    "assignee": MergeStrategy.LWW,
    "labels": MergeStrategy.UNION,
    "dependencies": MergeStrategy.MERGE_BY_KEY,
    "parent_id": MergeStrategy.LWW,
    "due_date": MergeStrategy.LWW,
    "deferred_until": MergeStrategy.LWW,
    "created_at": MergeStrategy.EARLIEST,
    "created_by": MergeStrategy.EARLIEST,
    "updated_at": MergeStrategy.RECOMPUTE,
    "closed_at": MergeStrategy.LWW,
    "close_reason": MergeStrategy.LWW,
    "extensions": MergeStrategy.DEEP_MERGE_NAMESPACES,
}

# Fields whose discarded values are archived (both LWW flavours archive losers)
ARCHIVING_STRATEGIES = frozenset({MergeStrategy.LWW, MergeStrategy.LWW_ARCHIVE})


def union_sorted(local: list[str], remote: list[str]) -> list[str]:
    """Set union, sorted."""
    return sorted(set(local) | set(remote))


def merge_by_key(
    winner: list[dict[str, Any]],
    loser: list[dict[str, Any]],
    key: str = "target",
) -> list[dict[str, Any]]:
    """
    Union two lists of records keyed by ``key``, sorted by key.

    When both sides hold a record with the same key, the winner's is kept.
    """
    by_key = {item[key]: item for item in loser}
    by_key.update({item[key]: item for item in winner})
    return [by_key[k] for k in sorted(by_key)]


def increment(local: int, remote: int) -> int:
    return max(local, remote) + 1


def deep_merge_lww(winner: Any, loser: Any) -> Any:
    """
    Recursive merge of two values where ``winner`` takes precedence.

    Dicts are merged key by key (keys from both survive); any other pair of
    differing values resolves to the winner's.
    """
    if isinstance(winner, dict) and isinstance(loser, dict):
        result = dict(loser)
        for key, value in winner.items():
            result[key] = deep_merge_lww(value, loser[key]) if key in loser else value
        return result
    return winner
