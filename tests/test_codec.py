"""
Tests for the issue file codec.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from tbd.core.errors import SchemaViolation
from tbd.core.issues.codec import content_hash, decode_issue, encode_issue
from tbd.core.issues.models import Dependency, Issue, IssueKind, IssueStatus

ISSUE_ID = "is-01hx5zzkbkactav9wevgemmvrz"
OTHER_ID = "is-01hx5zzkbkactav9wevgemmvs0"
WHEN = datetime(2025, 1, 7, 10, 0, 0, 123000, tzinfo=timezone.utc)


def make_issue(**overrides: object) -> Issue:
    data: dict[str, object] = {
        "id": ISSUE_ID,
        "title": "Fix the login bug",
        "kind": IssueKind.BUG,
        "created_at": WHEN,
        "updated_at": WHEN,
    }
    data.update(overrides)
    return Issue.model_validate(data)


class TestEncode:
    """Tests for encode_issue."""

    def test_front_matter_and_body(self) -> None:
        """Metadata goes in front matter, description in the body."""
        text = encode_issue(make_issue(description="Users can't log in."))

        assert text.startswith("---\n")
        front, body = text[4:].split("\n---\n", 1)
        assert f"id: {ISSUE_ID}" in front
        assert "kind: bug" in front
        assert "priority: 2" in front
        assert "description" not in front
        assert body == "Users can't log in.\n"

    def test_keys_sorted_and_nulls_explicit(self) -> None:
        """Keys are sorted and empty values are written, not omitted."""
        text = encode_issue(make_issue())
        front = text.split("---\n")[1]
        keys = [line.split(":")[0] for line in front.splitlines() if not line.startswith(" ")]

        assert keys == sorted(keys)
        assert "assignee: null" in front
        assert "labels: []" in front
        assert "extensions: {}" in front

    def test_timestamps_use_z_suffix_with_milliseconds(self) -> None:
        text = encode_issue(make_issue())
        assert "created_at: '2025-01-07T10:00:00.123Z'" in text

    def test_notes_section(self) -> None:
        """Notes follow the description under a '## Notes' heading."""
        text = encode_issue(make_issue(description="Desc", notes="Tried restarting."))
        assert text.endswith("---\nDesc\n\n## Notes\n\nTried restarting.\n")

    def test_single_trailing_newline(self) -> None:
        text = encode_issue(make_issue(description="Desc\n\n\n\n"))
        assert text.endswith("Desc\n")
        assert not text.endswith("\n\n")

    def test_body_normalized(self) -> None:
        """CRLF becomes LF and blank-line runs collapse."""
        issue = make_issue(description="line one\r\n\r\n\r\n\r\nline two")
        assert issue.description == "line one\n\nline two"


class TestDecode:
    """Tests for decode_issue."""

    def test_roundtrip_preserves_issue(self) -> None:
        issue = make_issue(
            description="Desc",
            notes="Some notes",
            labels=["backend", "auth"],
            dependencies=[Dependency(target=OTHER_ID)],
            status=IssueStatus.IN_PROGRESS,
            priority=1,
            extensions={"github": {"number": 42}},
        )
        assert decode_issue(encode_issue(issue)) == issue

    def test_encoding_is_canonical(self) -> None:
        """Re-encoding decoded canonical text yields the same bytes."""
        text = encode_issue(make_issue(description="Desc", notes="Notes"))
        assert encode_issue(decode_issue(text)) == text

    def test_notes_split_at_first_heading(self) -> None:
        """A second '## Notes' heading stays inside the notes."""
        text = encode_issue(make_issue(description="Desc")).rstrip("\n")
        text += "\n\n## Notes\n\nfirst\n\n## Notes\n\nsecond\n"

        issue = decode_issue(text)

        assert issue.description == "Desc"
        assert issue.notes == "first\n\n## Notes\n\nsecond"

    def test_crlf_input(self) -> None:
        text = encode_issue(make_issue(description="Desc")).replace("\n", "\r\n")
        assert decode_issue(text).description == "Desc"

    def test_conflict_markers_rejected(self) -> None:
        text = encode_issue(make_issue())
        text = text.replace(
            "priority: 2", "<<<<<<< HEAD\npriority: 2\n=======\npriority: 3\n>>>>>>> remote"
        )

        with pytest.raises(SchemaViolation) as exc_info:
            decode_issue(text, source="issue.md")

        assert "conflict markers" in exc_info.value.message
        assert "tbd doctor --fix" in str(exc_info.value)

    def test_missing_front_matter(self) -> None:
        with pytest.raises(SchemaViolation, match="front matter"):
            decode_issue("Just a body\n")

    def test_invalid_field_named(self) -> None:
        """A bad value is reported with the field that holds it."""
        text = encode_issue(make_issue()).replace("priority: 2", "priority: 9")

        with pytest.raises(SchemaViolation) as exc_info:
            decode_issue(text)

        assert exc_info.value.field == "priority"

    def test_unknown_status_rejected(self) -> None:
        text = encode_issue(make_issue()).replace("status: open", "status: done")
        with pytest.raises(SchemaViolation) as exc_info:
            decode_issue(text)
        assert exc_info.value.field == "status"

    def test_description_in_front_matter_rejected(self) -> None:
        text = encode_issue(make_issue()).replace("kind: bug", "description: x\nkind: bug")
        with pytest.raises(SchemaViolation) as exc_info:
            decode_issue(text)
        assert exc_info.value.field == "description"


class TestContentHash:
    """Tests for content_hash."""

    def test_ignores_version(self) -> None:
        assert content_hash(make_issue(version=1)) == content_hash(make_issue(version=7))

    def test_ignores_label_order(self) -> None:
        a = make_issue(labels=["a", "b"])
        b = make_issue(labels=["b", "a"])
        assert content_hash(a) == content_hash(b)

    def test_changes_with_content(self) -> None:
        assert content_hash(make_issue()) != content_hash(make_issue(title="Other"))
