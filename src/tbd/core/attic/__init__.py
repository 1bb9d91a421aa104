"""
Attic data models.

The attic keeps every value a merge or a restore discarded. The archive
itself lives in ``tbd.core.attic.archive``; it depends on the merge engine,
which in turn produces the entries defined here.
"""

from tbd.core.attic.models import (
    EXTENSIONS_FIELD_PREFIX,
    FULL_ENTITY_FIELD,
    AtticContext,
    AtticEntry,
    AtticFilter,
    Side,
    format_attic_timestamp,
)

__all__ = [
    "EXTENSIONS_FIELD_PREFIX",
    "FULL_ENTITY_FIELD",
    "AtticContext",
    "AtticEntry",
    "AtticFilter",
    "Side",
    "format_attic_timestamp",
]
