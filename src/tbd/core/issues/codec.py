"""
Issue file codec.

An issue file is YAML front matter followed by a Markdown body::

    ---
    assignee: null
    close_reason: null
    ...
    version: 3
    ---
    Description text.

    ## Notes

    Working notes.

Encoding is canonical: keys sorted at every level, block style, ``...Z``
timestamps, explicit nulls and empty collections, normalized body text,
LF endings and exactly one trailing newline. ``encode_issue(decode_issue(t))``
returns ``t`` for any text this module produced.
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Any

import frontmatter
import yaml
from pydantic import ValidationError as PydanticValidationError

from tbd.core.errors import SchemaViolation
from tbd.core.issues.models import Issue
from tbd.utils.yaml_io import CONFLICT_HINT, dump_yaml, has_conflict_markers

logger = logging.getLogger(__name__)

FRONT_MATTER_DELIMITER = "---"
NOTES_HEADING = "## Notes"

_NOTES_RE = re.compile(r"^## Notes[ \t]*$", re.MULTILINE | re.IGNORECASE)

# Fields excluded from the content hash (informational only)
HASH_EXCLUDED_FIELDS = frozenset({"version"})


def encode_issue(issue: Issue) -> str:
    """Serialize an issue to its canonical file text."""
    parts = [FRONT_MATTER_DELIMITER, dump_yaml(issue.to_metadata()).rstrip("\n"), "---"]

    if issue.description:
        parts.append(issue.description)

    if issue.notes:
        parts.extend(["", NOTES_HEADING, "", issue.notes])

    return "\n".join(parts) + "\n"


def _split_body(body: str) -> tuple[str | None, str | None]:
    match = _NOTES_RE.search(body)
    if match is None:
        return body, None
    return body[: match.start()], body[match.end() :]


def _violation_from_pydantic(error: PydanticValidationError, source: str) -> SchemaViolation:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    return SchemaViolation(f"{first.get('msg', 'invalid value')} in {source}", field=field)


def decode_issue(text: str, *, source: str = "<issue>") -> Issue:
    """
    Parse issue file text into a validated Issue.

    Raises:
        ValidationError: If the text contains merge conflict markers.
        SchemaViolation: On malformed front matter or invalid field values,
            naming the offending field where one can be identified.
    """
    if has_conflict_markers(text):
        raise SchemaViolation(f"Merge conflict markers in {source}", hint=CONFLICT_HINT)

    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    if not normalized.startswith(FRONT_MATTER_DELIMITER + "\n"):
        raise SchemaViolation(f"Missing front matter opening delimiter in {source}")

    try:
        post = frontmatter.loads(normalized)
    except yaml.YAMLError as e:
        raise SchemaViolation(f"Invalid front matter YAML in {source}: {e}") from e
    except ValueError as e:
        raise SchemaViolation(f"Missing front matter closing delimiter in {source}") from e

    metadata: dict[str, Any] = dict(post.metadata)
    if not metadata:
        raise SchemaViolation(f"Empty front matter in {source}")

    for body_field in ("description", "notes"):
        if body_field in metadata:
            raise SchemaViolation(
                f"'{body_field}' belongs in the body, not the front matter, in {source}",
                field=body_field,
            )

    description, notes = _split_body(post.content)
    metadata["description"] = description
    metadata["notes"] = notes

    try:
        return Issue.model_validate(metadata)
    except PydanticValidationError as e:
        raise _violation_from_pydantic(e, source) from e


def canonicalize_for_hash(issue: Issue) -> str:
    """
    Canonical YAML of an issue for hashing.

    ``version`` is excluded, labels are sorted, dependencies are sorted by
    target, so two issues with the same content always hash the same.
    """
    data = issue.to_metadata()
    data["description"] = issue.description
    data["notes"] = issue.notes
    for key in HASH_EXCLUDED_FIELDS:
        data.pop(key, None)
    data["labels"] = sorted(data["labels"])
    data["dependencies"] = sorted(data["dependencies"], key=lambda d: (d["target"], d["type"]))
    return dump_yaml(data)


def content_hash(issue: Issue) -> str:
    """SHA-256 hex digest of the issue's canonical content."""
    return hashlib.sha256(canonicalize_for_hash(issue).encode("utf-8")).hexdigest()
