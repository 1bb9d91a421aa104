"""
Issue identifiers.

Public API:
    Generator functions:
        - new_internal_id: Time-ordered unique internal ID (is-<ulid>)
        - new_short_id: Random base-36 short ID
        - extract_short_id: Strip a display prefix (tbd-100 -> 100)

    Mapping:
        - IdMapping: short ID <-> internal ID table with bind/resolve
        - merge_id_mappings: Union merge of two mappings
        - load_id_mapping / save_id_mapping: ids.yml persistence
        - reconcile_mappings: Assign short IDs to unmapped issues

Example:
    >>> from tbd.core.ids import IdMapping, new_internal_id
    >>> mapping = IdMapping()
    >>> issue_id = new_internal_id()
    >>> short = mapping.assign(issue_id)
    >>> mapping.resolve_display(f"proj-{short}") == issue_id
    True
"""

from tbd.core.ids.generator import (
    extract_short_id,
    is_internal_id,
    new_internal_id,
    new_short_id,
    new_ulid,
)
from tbd.core.ids.mapping import (
    IdMapping,
    format_id_mapping,
    load_id_mapping,
    merge_id_mappings,
    parse_id_mapping,
    reconcile_mappings,
    save_id_mapping,
)

__all__ = [
    "IdMapping",
    "extract_short_id",
    "format_id_mapping",
    "is_internal_id",
    "load_id_mapping",
    "merge_id_mappings",
    "new_internal_id",
    "new_short_id",
    "new_ulid",
    "parse_id_mapping",
    "reconcile_mappings",
    "save_id_mapping",
]
