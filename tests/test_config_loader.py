"""
Tests for configuration loading, local state and dataset metadata.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from tbd.core.config.loader import (
    decode_meta,
    encode_meta,
    find_project_root,
    init_config,
    load_config,
    load_state,
    save_config,
    save_state,
)
from tbd.core.config.models import LocalState, Meta
from tbd.core.errors import NotInitializedError, ValidationError
from tbd.core.paths import GITIGNORE_ENTRIES


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    init_config(root, "proj")
    return root


class TestInitConfig:
    """Tests for init_config."""

    def test_writes_defaults(self, project: Path) -> None:
        config = load_config(project)

        assert config.display.id_prefix == "proj"
        assert config.sync.branch == "tbd-sync"
        assert config.sync.remote == "origin"
        assert config.tbd_format == "f01"
        assert config.settings.git_timeout_seconds == 60
        assert config.settings.push_retries == 3

    def test_writes_gitignore(self, project: Path) -> None:
        lines = (project / ".tbd" / ".gitignore").read_text().splitlines()
        for entry in GITIGNORE_ENTRIES:
            assert entry in lines

    def test_sync_overrides(self, tmp_path: Path) -> None:
        config = init_config(tmp_path, "proj", branch="issues", remote="upstream")
        assert config.sync.branch == "issues"
        assert config.sync.remote == "upstream"

    @pytest.mark.parametrize("prefix", ["", "1abc", "has space", "a-b"])
    def test_invalid_prefix(self, tmp_path: Path, prefix: str) -> None:
        with pytest.raises(ValidationError):
            init_config(tmp_path, prefix)

    def test_unsafe_branch_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            init_config(tmp_path, "proj", branch="a;rm -rf")


class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_config(self, tmp_path: Path) -> None:
        with pytest.raises(NotInitializedError) as exc_info:
            load_config(tmp_path)
        assert "tbd init" in str(exc_info.value)

    def test_env_overrides(self, project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TBD_SYNC_BRANCH", "other-sync")
        monkeypatch.setenv("TBD_PUSH_RETRIES", "5")
        monkeypatch.setenv("TBD_GIT_TIMEOUT", "10")

        config = load_config(project, use_cache=False)

        assert config.sync.branch == "other-sync"
        assert config.settings.push_retries == 5
        assert config.settings.git_timeout_seconds == 10

    def test_invalid_env_value_ignored(
        self, project: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        monkeypatch.setenv("TBD_GIT_TIMEOUT", "soon")

        config = load_config(project, use_cache=False)

        assert config.settings.git_timeout_seconds == 60
        assert "TBD_GIT_TIMEOUT" in caplog.text

    def test_cached_until_saved(self, project: Path) -> None:
        config = load_config(project)
        assert load_config(project) is config

        updated = config.model_copy(update={"tbd_version": "9.9.9"})
        save_config(project, updated)

        assert load_config(project).tbd_version == "9.9.9"

    def test_invalid_file(self, project: Path) -> None:
        (project / ".tbd" / "config.yml").write_text("display:\n  id_prefix: 'Bad Prefix'\n")
        with pytest.raises(ValidationError):
            load_config(project, use_cache=False)

    def test_unknown_keys_preserved(self, project: Path) -> None:
        path = project / ".tbd" / "config.yml"
        path.write_text(path.read_text() + "future_option: true\n")
        config = load_config(project, use_cache=False)
        assert config.model_extra == {"future_option": True}


class TestFindProjectRoot:
    """Tests for find_project_root."""

    def test_finds_from_subdirectory(self, project: Path) -> None:
        nested = project / "src" / "pkg"
        nested.mkdir(parents=True)
        assert find_project_root(nested) == project.resolve()

    def test_not_a_project(self, tmp_path: Path) -> None:
        with pytest.raises(NotInitializedError):
            find_project_root(tmp_path)


class TestStateAndMeta:
    """Tests for local state and meta.yml."""

    def test_state_roundtrip(self, project: Path) -> None:
        when = datetime(2025, 1, 7, 10, 0, 0, 500000, tzinfo=timezone.utc)
        save_state(project, LocalState(last_sync_at=when))

        assert load_state(project).last_sync_at == when
        assert "last_sync_at: '2025-01-07T10:00:00.500Z'" in (
            project / ".tbd" / "state.yml"
        ).read_text()

    def test_missing_state(self, project: Path) -> None:
        assert load_state(project).last_sync_at is None

    def test_unreadable_state_is_empty(self, project: Path) -> None:
        (project / ".tbd" / "state.yml").write_text("last_sync_at: [unclosed\n")
        assert load_state(project).last_sync_at is None

    def test_meta_roundtrip(self) -> None:
        meta = Meta(created_at=datetime(2025, 1, 7, tzinfo=timezone.utc))
        text = encode_meta(meta)

        assert text == "created_at: '2025-01-07T00:00:00.000Z'\nschema_version: 1\n"
        assert decode_meta(text) == meta

    def test_meta_invalid(self) -> None:
        with pytest.raises(ValidationError):
            decode_meta("schema_version: 0\ncreated_at: '2025-01-07T00:00:00.000Z'\n")
