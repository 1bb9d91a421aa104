"""
Configuration loading with layered merging.

Implements the configuration precedence chain:
    defaults < .tbd/config.yml < env vars

Local state (.tbd/state.yml) and dataset metadata (meta.yml) are read and
written here too, since they share the YAML plumbing.
"""

import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from tbd.core.errors import NotInitializedError, ValidationError
from tbd.core.paths import (
    CONFIG_FILE,
    GITIGNORE_ENTRIES,
    GITIGNORE_FILE,
    STATE_FILE,
    TBD_DIR,
)
from tbd.utils.atomic import atomic_write_text
from tbd.utils.timestamps import format_timestamp
from tbd.utils.yaml_io import dump_yaml, load_yaml

from .models import DisplayConfig, LocalState, Meta, TbdConfig

logger = logging.getLogger(__name__)

# Cache keyed by project root, to avoid reparsing config within one invocation
_config_cache: dict[Path, TbdConfig] = {}


def find_project_root(start: Path | None = None) -> Path:
    """
    Walk up from ``start`` to the directory holding .tbd/config.yml.

    Raises:
        NotInitializedError: If no ancestor is a tbd project.
    """
    current = (start or Path.cwd()).resolve()
    for candidate in [current, *current.parents]:
        if (candidate / CONFIG_FILE).is_file():
            return candidate
    raise NotInitializedError(f"Not a tbd project (or any parent directory): {current}")


def get_config_path(project_root: Path) -> Path:
    return project_root / CONFIG_FILE


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in `override` take precedence over values in `base`; nested
    dicts are merged rather than replaced.

    Example:
        >>> deep_merge({"a": 1, "b": {"x": 10}}, {"b": {"y": 2}})
        {'a': 1, 'b': {'x': 10, 'y': 2}}
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_yaml_file(path: Path) -> dict[str, Any] | None:
    """
    Load a YAML mapping, returning None if the file doesn't exist.

    Raises:
        ValidationError: If the file exists but is not a valid YAML mapping.
    """
    if not path.exists():
        return None

    data = load_yaml(path.read_text(encoding="utf-8"), source=str(path))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(f"Expected a mapping in {path}, got {type(data).__name__}")
    return data


def _set_nested(result: dict[str, Any], section: str, key: str, value: Any) -> None:
    if not isinstance(result.get(section), dict):
        result[section] = {}
    result[section][key] = value


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Supported env vars:
        TBD_SYNC_BRANCH - overrides sync.branch
        TBD_SYNC_REMOTE - overrides sync.remote
        TBD_GIT_TIMEOUT - overrides settings.git_timeout_seconds
        TBD_PUSH_RETRIES - overrides settings.push_retries

    Invalid numeric values are logged and ignored.
    """
    result = deep_merge({}, config_dict)

    if branch := os.environ.get("TBD_SYNC_BRANCH"):
        _set_nested(result, "sync", "branch", branch)

    if remote := os.environ.get("TBD_SYNC_REMOTE"):
        _set_nested(result, "sync", "remote", remote)

    for env_name, key in (
        ("TBD_GIT_TIMEOUT", "git_timeout_seconds"),
        ("TBD_PUSH_RETRIES", "push_retries"),
    ):
        raw = os.environ.get(env_name)
        if not raw:
            continue
        try:
            value = int(raw)
        except ValueError:
            logger.warning("Invalid %s value '%s', ignoring", env_name, raw)
            continue
        if value < 1:
            logger.warning("%s must be >= 1, got %d, ignoring", env_name, value)
            continue
        _set_nested(result, "settings", key, value)

    return result


def load_config(project_root: Path, use_cache: bool = True) -> TbdConfig:
    """
    Load and validate .tbd/config.yml with env overrides applied.

    Raises:
        NotInitializedError: If the config file does not exist.
        ValidationError: If the merged config fails validation.
    """
    project_root = project_root.resolve()
    if use_cache and project_root in _config_cache:
        return _config_cache[project_root]

    config_path = get_config_path(project_root)
    file_config = load_yaml_file(config_path)
    if file_config is None:
        raise NotInitializedError(f"No tbd config at {config_path}")

    merged = apply_env_overrides(file_config)

    try:
        config = TbdConfig(**merged)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid configuration in {config_path}: {e}",
            hint=f"Fix {CONFIG_FILE} by hand or re-run 'tbd init --prefix <name>'.",
        ) from e

    _config_cache[project_root] = config
    return config


def clear_cache() -> None:
    """
    Clear the cached configuration.

    Useful for testing or when config files change during execution.
    """
    _config_cache.clear()


def save_config(project_root: Path, config: TbdConfig) -> Path:
    path = get_config_path(project_root)
    atomic_write_text(path, dump_yaml(config.model_dump(mode="json")))
    _config_cache.pop(project_root.resolve(), None)
    return path


def ensure_gitignore(project_root: Path) -> Path:
    """Write .tbd/.gitignore with every local-only entry (idempotent)."""
    path = project_root / GITIGNORE_FILE
    existing: list[str] = []
    if path.exists():
        existing = path.read_text(encoding="utf-8").splitlines()
    missing = [entry for entry in GITIGNORE_ENTRIES if entry not in existing]
    if missing or not path.exists():
        lines = [line for line in existing if line.strip()] + missing
        atomic_write_text(path, "\n".join(lines) + "\n")
    return path


def init_config(project_root: Path, id_prefix: str, **sync_overrides: str) -> TbdConfig:
    """
    Create .tbd/config.yml and .tbd/.gitignore for a new project.

    Raises:
        ValidationError: If the prefix or sync overrides are invalid.
    """
    try:
        config = TbdConfig(
            display=DisplayConfig(id_prefix=id_prefix),
            sync={k: v for k, v in sync_overrides.items() if v},
        )
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid configuration: {e}") from e

    (project_root / TBD_DIR).mkdir(parents=True, exist_ok=True)
    save_config(project_root, config)
    ensure_gitignore(project_root)
    logger.info("Initialized tbd config at %s", get_config_path(project_root))
    return config


def load_state(project_root: Path) -> LocalState:
    """Read .tbd/state.yml; a missing or unreadable file yields empty state."""
    path = project_root / STATE_FILE
    try:
        data = load_yaml_file(path)
    except ValidationError as e:
        logger.warning("Ignoring unreadable local state: %s", e)
        return LocalState()
    return LocalState(**(data or {}))


def save_state(project_root: Path, state: LocalState) -> None:
    data: dict[str, Any] = state.model_dump(mode="json", exclude_none=True)
    if state.last_sync_at is not None:
        data["last_sync_at"] = format_timestamp(state.last_sync_at)
    atomic_write_text(project_root / STATE_FILE, dump_yaml(data))


def encode_meta(meta: Meta) -> str:
    return dump_yaml(
        {
            "schema_version": meta.schema_version,
            "created_at": format_timestamp(meta.created_at),
        }
    )


def decode_meta(text: str, *, source: str = "meta.yml") -> Meta:
    data = load_yaml(text, source=source)
    if not isinstance(data, dict):
        raise ValidationError(f"Expected a mapping in {source}")
    try:
        return Meta(**data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {source}: {e}") from e
