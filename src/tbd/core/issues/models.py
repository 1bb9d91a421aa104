"""
Issue data models for tbd.

Defines the Issue model stored as one Markdown file per issue on the sync
branch, plus its enums. Validation here is the single source of truth for
what a well-formed issue is; the codec converts pydantic errors into
SchemaViolation reports that name the offending field.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tbd.utils.timestamps import format_timestamp, normalize_datetime, utc_now

ENTITY_TYPE = "is"

INTERNAL_ID_RE = re.compile(r"^is-[0-9a-z]{26}$")

MAX_TITLE_LENGTH = 500
MAX_TEXT_LENGTH = 50000

_BLANK_RUN_RE = re.compile(r"\n{3,}")


class IssueStatus(str, Enum):
    """Issue status values (compatible with Beads)."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DEFERRED = "deferred"
    CLOSED = "closed"

    @property
    def is_terminal(self) -> bool:
        return self is IssueStatus.CLOSED


class IssueKind(str, Enum):
    """Issue kind values."""

    BUG = "bug"
    FEATURE = "feature"
    TASK = "task"
    EPIC = "epic"
    CHORE = "chore"


class DependencyType(str, Enum):
    BLOCKS = "blocks"


class Dependency(BaseModel):
    """A relation from this issue to another (currently only 'blocks')."""

    type: DependencyType = DependencyType.BLOCKS
    target: str = Field(..., description="Internal ID of the related issue")

    model_config = ConfigDict(frozen=True)

    @field_validator("target")
    @classmethod
    def validate_target(cls, v: str) -> str:
        if not INTERNAL_ID_RE.match(v):
            raise ValueError(f"not an internal issue ID: {v!r}")
        return v


def normalize_text(value: str | None) -> str | None:
    """
    Canonical form of free text: LF line endings, surrounding whitespace
    trimmed, runs of blank lines collapsed to one. Empty text becomes None.
    """
    if value is None or not isinstance(value, str):
        return value
    text = value.replace("\r\n", "\n").replace("\r", "\n").strip()
    text = _BLANK_RUN_RE.sub("\n\n", text)
    return text or None


class Issue(BaseModel):
    """
    An issue in the tbd store.

    ``id`` and ``type`` never change. ``version`` is an informational edit
    counter; it is never used to detect conflicts.

    Example:
        >>> issue = Issue(
        ...     id="is-01hx5zzkbkactav9wevgemmvrz",
        ...     title="Fix the login bug",
        ...     kind=IssueKind.BUG,
        ... )
        >>> issue.status
        <IssueStatus.OPEN: 'open'>
    """

    type: Literal["is"] = ENTITY_TYPE
    id: str = Field(..., description="Internal ID (is-<ulid>)")
    version: int = Field(default=1, ge=0, description="Edit counter, informational only")

    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str | None = Field(default=None, max_length=MAX_TEXT_LENGTH)
    notes: str | None = Field(default=None, max_length=MAX_TEXT_LENGTH)

    kind: IssueKind = IssueKind.TASK
    status: IssueStatus = IssueStatus.OPEN
    priority: int = Field(default=2, ge=0, le=4, description="0 (critical) to 4 (backlog)")

    assignee: str | None = None
    labels: list[str] = Field(default_factory=list)
    dependencies: list[Dependency] = Field(default_factory=list)
    parent_id: str | None = None

    due_date: datetime | None = None
    deferred_until: datetime | None = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    created_by: str | None = None
    closed_at: datetime | None = None
    close_reason: str | None = None

    extensions: dict[str, Any] = Field(
        default_factory=dict, description="Namespaced third-party metadata, kept opaque"
    )

    model_config = ConfigDict(validate_assignment=True)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not INTERNAL_ID_RE.match(v):
            raise ValueError(f"not an internal issue ID: {v!r}")
        return v

    @field_validator("parent_id")
    @classmethod
    def validate_parent_id(cls, v: str | None) -> str | None:
        if v is not None and not INTERNAL_ID_RE.match(v):
            raise ValueError(f"not an internal issue ID: {v!r}")
        return v

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v

    @field_validator("description", "notes", mode="before")
    @classmethod
    def normalize_body(cls, v: str | None) -> str | None:
        return normalize_text(v)

    @field_validator("labels")
    @classmethod
    def validate_labels(cls, v: list[str]) -> list[str]:
        labels = [label.strip() for label in v]
        if any(not label for label in labels):
            raise ValueError("labels must not be empty")
        return labels

    @field_validator(
        "due_date", "deferred_until", "created_at", "updated_at", "closed_at"
    )
    @classmethod
    def normalize_timestamps(cls, v: datetime | None) -> datetime | None:
        return normalize_datetime(v) if v is not None else None

    @field_validator("extensions", mode="before")
    @classmethod
    def default_extensions(cls, v: dict[str, Any] | None) -> dict[str, Any]:
        return {} if v is None else v

    @model_validator(mode="after")
    def check_self_reference(self) -> "Issue":
        if self.parent_id == self.id:
            raise ValueError("an issue cannot be its own parent")
        return self

    @property
    def is_closed(self) -> bool:
        return self.status is IssueStatus.CLOSED

    def to_metadata(self) -> dict[str, Any]:
        """
        Front-matter mapping for this issue: every field except the body
        text, timestamps as ``...Z`` strings, nulls and empty collections
        kept explicit.
        """
        data = self.model_dump(mode="json", exclude={"description", "notes"})
        for key in ("due_date", "deferred_until", "created_at", "updated_at", "closed_at"):
            value = getattr(self, key)
            data[key] = format_timestamp(value) if value is not None else None
        return data
