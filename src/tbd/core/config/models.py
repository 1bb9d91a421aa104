"""
Configuration data models for tbd.

These models define the structure of ``.tbd/config.yml`` (committed on the
user's main branch), ``.tbd/state.yml`` (local, gitignored) and the synced
``meta.yml`` that lives on the sync branch.
"""

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tbd import __version__
from tbd.core.paths import SYNC_BRANCH
from tbd.utils.timestamps import normalize_datetime, utc_now

# Current on-disk format of the .tbd/ directory
TBD_FORMAT = "f01"

# Current schema version of the synced data directory
SCHEMA_VERSION = 1

_BRANCH_RE = re.compile(r"^[a-zA-Z0-9._/-]+$")
_REMOTE_RE = re.compile(r"^[a-zA-Z0-9._-]+$")
_PREFIX_RE = re.compile(r"^[a-z][a-z0-9]*$")


class SyncConfig(BaseModel):
    """
    Where issue data is synchronized.

    Branch and remote names end up on git command lines, so both are
    restricted to characters that cannot be interpreted by git or a shell.
    """

    branch: str = Field(
        default=SYNC_BRANCH,
        min_length=1,
        max_length=255,
        description="Dedicated branch holding only issue data",
    )
    remote: str = Field(
        default="origin",
        min_length=1,
        max_length=255,
        description="Remote the sync branch is pushed to",
    )

    @field_validator("branch")
    @classmethod
    def validate_branch(cls, v: str) -> str:
        if not _BRANCH_RE.match(v) or v.startswith("-") or ".." in v:
            raise ValueError(
                "Invalid branch name: only alphanumeric, dots, underscores, "
                "hyphens, and slashes allowed"
            )
        return v

    @field_validator("remote")
    @classmethod
    def validate_remote(cls, v: str) -> str:
        if not _REMOTE_RE.match(v) or v.startswith("-"):
            raise ValueError(
                "Invalid remote name: only alphanumeric, dots, underscores, and hyphens allowed"
            )
        return v


class DisplayConfig(BaseModel):
    """How issue IDs are shown to humans."""

    id_prefix: str = Field(
        min_length=1,
        max_length=20,
        description="Project prefix shown in display IDs (proj-a7k2)",
    )

    @field_validator("id_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        v = v.strip().lower()
        if not _PREFIX_RE.match(v):
            raise ValueError(
                "ID prefix must be lowercase letters and digits, starting with a letter"
            )
        return v


class SettingsConfig(BaseModel):
    """Operational limits."""

    git_timeout_seconds: int = Field(
        default=60, ge=1, description="Timeout applied to every git subprocess call"
    )
    push_retries: int = Field(
        default=3, ge=1, le=10, description="Push attempts before sync gives up"
    )
    lock_timeout_seconds: float = Field(
        default=30.0, ge=0, description="How long to wait for the worktree lock"
    )
    stale_lock_seconds: float = Field(
        default=600.0, gt=0, description="Age after which a leftover lock file is broken"
    )


class TbdConfig(BaseModel):
    """
    Project configuration stored in .tbd/config.yml.

    Example:
        >>> config = TbdConfig(display=DisplayConfig(id_prefix="proj"))
        >>> config.sync.branch
        'tbd-sync'
    """

    tbd_format: str = Field(default=TBD_FORMAT, description="On-disk format version")
    tbd_version: str = Field(default=__version__, description="tbd version that wrote the config")
    sync: SyncConfig = Field(default_factory=SyncConfig)
    display: DisplayConfig
    settings: SettingsConfig = Field(default_factory=SettingsConfig)

    model_config = ConfigDict(extra="allow")


class LocalState(BaseModel):
    """Per-machine bookkeeping kept out of the synced data."""

    last_sync_at: datetime | None = None

    model_config = ConfigDict(extra="allow")

    @field_validator("last_sync_at")
    @classmethod
    def normalize(cls, v: datetime | None) -> datetime | None:
        return normalize_datetime(v) if v is not None else None


class Meta(BaseModel):
    """Dataset metadata stored as meta.yml on the sync branch."""

    schema_version: int = Field(default=SCHEMA_VERSION, ge=1)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("created_at")
    @classmethod
    def normalize(cls, v: datetime) -> datetime:
        return normalize_datetime(v)
