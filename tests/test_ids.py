"""
Tests for ID generation and the short ID mapping.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from tbd.core.errors import AlreadyBound, NotFound, TbdError, ValidationError
from tbd.core.ids import generator
from tbd.core.ids.generator import (
    extract_short_id,
    is_internal_id,
    new_internal_id,
    new_short_id,
    ulid_from_internal_id,
)
from tbd.core.ids.mapping import (
    IdMapping,
    format_id_mapping,
    load_id_mapping,
    merge_id_mappings,
    natural_sort_key,
    parse_id_mapping,
    reconcile_mappings,
    save_id_mapping,
)

ULID_A = "01hx5zzkbkactav9wevgemmvra"
ULID_B = "01hx5zzkbkactav9wevgemmvrb"
ULID_C = "01hx5zzkbkactav9wevgemmvrc"


class TestInternalIds:
    """Tests for new_internal_id."""

    def test_format(self) -> None:
        issue_id = new_internal_id()
        assert issue_id.startswith("is-")
        assert len(issue_id) == 3 + 26
        assert is_internal_id(issue_id)

    def test_monotonic_within_process(self) -> None:
        """IDs sort in creation order even within one millisecond."""
        ids = [new_internal_id() for _ in range(200)]
        assert ids == sorted(ids)
        assert len(set(ids)) == len(ids)

    def test_lowercase(self) -> None:
        issue_id = new_internal_id()
        assert issue_id == issue_id.lower()


class TestShortIds:
    """Tests for short ID helpers."""

    def test_length_and_alphabet(self) -> None:
        short_id = new_short_id()
        assert len(short_id) == 4
        assert all(c in generator.SHORT_ID_ALPHABET for c in short_id)

    def test_invalid_length(self) -> None:
        with pytest.raises(ValueError):
            new_short_id(0)

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("tbd-100", "100"),
            ("proj-a7k2", "a7k2"),
            ("a7k2", "a7k2"),
            ("PROJ-A7K2", "a7k2"),
        ],
    )
    def test_extract_short_id(self, value: str, expected: str) -> None:
        assert extract_short_id(value) == expected

    def test_ulid_from_internal_id(self) -> None:
        assert ulid_from_internal_id(f"is-{ULID_A}") == ULID_A


class TestIdMapping:
    """Tests for IdMapping bind/resolve."""

    def test_bind_and_resolve(self) -> None:
        mapping = IdMapping()
        mapping.bind_display("a7k2", f"is-{ULID_A}")

        assert mapping.resolve_display("proj-a7k2") == f"is-{ULID_A}"
        assert mapping.resolve_display("a7k2") == f"is-{ULID_A}"
        assert mapping.resolve_display("PROJ-A7K2") == f"is-{ULID_A}"
        assert mapping.display_id(f"is-{ULID_A}", "proj") == "proj-a7k2"

    def test_resolve_internal_and_bare_ulid(self) -> None:
        mapping = IdMapping()
        assert mapping.resolve_display(f"is-{ULID_A}") == f"is-{ULID_A}"
        assert mapping.resolve_display(ULID_A) == f"is-{ULID_A}"

    def test_prefix_of_short_id_does_not_match(self) -> None:
        mapping = IdMapping({"a7k2": ULID_A})
        with pytest.raises(NotFound):
            mapping.resolve_display("a7k")

    def test_unknown_short_id(self) -> None:
        with pytest.raises(NotFound) as exc_info:
            IdMapping().resolve_display("proj-zzzz")
        assert "tbd list" in str(exc_info.value)

    def test_project_prefix_checked(self) -> None:
        mapping = IdMapping({"a7k2": ULID_A})

        assert mapping.resolve_display("proj-a7k2", "proj") == f"is-{ULID_A}"
        assert mapping.resolve_display("a7k2", "proj") == f"is-{ULID_A}"
        assert mapping.resolve_display(f"is-{ULID_A}", "proj") == f"is-{ULID_A}"
        with pytest.raises(NotFound) as exc_info:
            mapping.resolve_display("other-a7k2", "proj")
        assert "start with 'proj-'" in str(exc_info.value)

    def test_rebind_same_pair_is_noop(self) -> None:
        mapping = IdMapping({"a7k2": ULID_A})
        mapping.bind_display("a7k2", f"is-{ULID_A}")
        assert len(mapping) == 1

    def test_short_id_never_rebound(self) -> None:
        mapping = IdMapping({"a7k2": ULID_A})
        with pytest.raises(AlreadyBound):
            mapping.bind_display("a7k2", f"is-{ULID_B}")

    def test_issue_keeps_its_short_id(self) -> None:
        mapping = IdMapping({"a7k2": ULID_A})
        with pytest.raises(AlreadyBound):
            mapping.bind_display("b3m9", f"is-{ULID_A}")

    def test_bind_rejects_malformed_ids(self) -> None:
        mapping = IdMapping()
        with pytest.raises(ValidationError):
            mapping.bind_display("A-B", f"is-{ULID_A}")
        with pytest.raises(ValidationError):
            mapping.bind_display("a7k2", "not-an-id")

    def test_assign_is_idempotent(self) -> None:
        mapping = IdMapping()
        first = mapping.assign(f"is-{ULID_A}")
        assert mapping.assign(f"is-{ULID_A}") == first
        assert len(first) == 4

    def test_generate_grows_length_on_collisions(self) -> None:
        """After the optimal length keeps colliding, one longer length is tried."""
        mapping = IdMapping({"aaaa": ULID_A})
        with patch(
            "tbd.core.ids.mapping.new_short_id",
            side_effect=lambda length: "a" * length,
        ):
            assert mapping.generate_unique_short_id() == "aaaaa"

    def test_generate_gives_up(self) -> None:
        mapping = IdMapping({"aaaa": ULID_A, "aaaaa": ULID_B})
        with patch(
            "tbd.core.ids.mapping.new_short_id",
            side_effect=lambda length: "a" * length,
        ):
            with pytest.raises(TbdError, match="unique short ID"):
                mapping.generate_unique_short_id()


class TestMappingFile:
    """Tests for ids.yml parsing and formatting."""

    def test_natural_order(self) -> None:
        mapping = IdMapping({"10": ULID_A, "a7k2": ULID_B, "2": ULID_C})
        assert format_id_mapping(mapping) == (
            f"'2': {ULID_C}\n'10': {ULID_A}\na7k2: {ULID_B}\n"
        )

    def test_natural_sort_key(self) -> None:
        assert sorted(["10", "a", "2", "1"], key=natural_sort_key) == ["1", "2", "10", "a"]

    def test_parse_roundtrip(self) -> None:
        mapping = IdMapping({"100": ULID_A, "a7k2": ULID_B})
        assert parse_id_mapping(format_id_mapping(mapping)) == mapping

    def test_duplicate_keys_keep_first(self, caplog: pytest.LogCaptureFixture) -> None:
        text = f"a7k2: {ULID_A}\na7k2: {ULID_B}\n"

        mapping = parse_id_mapping(text)

        assert mapping.internal_id_for("a7k2") == f"is-{ULID_A}"
        assert "duplicate" in caplog.text

    def test_conflict_markers(self) -> None:
        text = f"<<<<<<< HEAD\na7k2: {ULID_A}\n=======\nb3m9: {ULID_B}\n>>>>>>> remote\n"
        with pytest.raises(ValidationError) as exc_info:
            parse_id_mapping(text)
        assert "tbd doctor --fix" in str(exc_info.value)

    def test_empty_file(self) -> None:
        assert len(parse_id_mapping("")) == 0
        assert len(parse_id_mapping("{}\n")) == 0

    def test_malformed_entry(self) -> None:
        with pytest.raises(ValidationError):
            parse_id_mapping("a7k2: not-a-ulid\n")

    def test_save_and_load(self, data_dir: Path) -> None:
        mapping = IdMapping({"a7k2": ULID_A})
        save_id_mapping(data_dir, mapping)
        assert load_id_mapping(data_dir) == mapping

    def test_load_missing_file(self, tmp_path: Path) -> None:
        assert len(load_id_mapping(tmp_path)) == 0


class TestMergeAndReconcile:
    """Tests for merge_id_mappings and reconcile_mappings."""

    def test_union(self) -> None:
        local = IdMapping({"a7k2": ULID_A})
        remote = IdMapping({"b3m9": ULID_B})

        merged = merge_id_mappings(local, remote)

        assert merged.entries() == {"a7k2": ULID_A, "b3m9": ULID_B}

    def test_conflicting_entry_keeps_local(self) -> None:
        local = IdMapping({"a7k2": ULID_A})
        remote = IdMapping({"a7k2": ULID_B})
        assert merge_id_mappings(local, remote).entries() == {"a7k2": ULID_A}

    def test_reconcile_assigns_missing(self) -> None:
        mapping = IdMapping({"a7k2": ULID_A})

        created, recovered = reconcile_mappings([f"is-{ULID_A}", f"is-{ULID_B}"], mapping)

        assert created == [f"is-{ULID_B}"]
        assert recovered == []
        assert mapping.short_id_for(f"is-{ULID_B}") is not None

    def test_reconcile_recovers_historical(self) -> None:
        mapping = IdMapping()
        historical = IdMapping({"100": ULID_A})

        created, recovered = reconcile_mappings([f"is-{ULID_A}"], mapping, historical)

        assert recovered == [f"is-{ULID_A}"]
        assert created == []
        assert mapping.short_id_for(f"is-{ULID_A}") == "100"
