"""
Canonical YAML reading and writing.

Output is deterministic: keys sorted at every level, block style only,
unicode kept as-is and no line wrapping, so the same data always yields the
same bytes and diffs stay minimal.
"""

from __future__ import annotations

import re
from typing import Any

import yaml

from tbd.core.errors import ValidationError

_CONFLICT_MARKER_RE = re.compile(r"^(<{7}( .*)?|={7}|>{7}( .*)?)$", re.MULTILINE)

CONFLICT_HINT = (
    "The file contains git merge conflict markers. Run 'tbd doctor --fix' "
    "or resolve the markers by hand, then run 'tbd sync'."
)


def has_conflict_markers(text: str) -> bool:
    """True if ``text`` contains a line that is a git conflict marker."""
    return _CONFLICT_MARKER_RE.search(text) is not None


def dump_yaml(data: Any) -> str:
    return yaml.safe_dump(
        data,
        sort_keys=True,
        default_flow_style=False,
        allow_unicode=True,
        width=2**31 - 1,
    )


def load_yaml(text: str, *, source: str = "<string>") -> Any:
    """
    Parse YAML, refusing content with conflict markers.

    Raises:
        ValidationError: On conflict markers or unparseable YAML.
    """
    if has_conflict_markers(text):
        raise ValidationError(f"Merge conflict markers in {source}", hint=CONFLICT_HINT)
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML in {source}: {e}") from e
