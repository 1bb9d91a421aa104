"""
Attic data models.

An attic entry records one value that a merge (or a restore) discarded.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

FULL_ENTITY_FIELD = "full"
EXTENSIONS_FIELD_PREFIX = "extensions."

_FIELD_RE = re.compile(r"^[a-z_]+(\.[A-Za-z0-9_.-]+)?$")


class Side(str, Enum):
    """Which replica a value came from."""

    LOCAL = "local"
    REMOTE = "remote"


class AtticContext(BaseModel):
    """Versions and update times of both sides when the value was discarded."""

    local_version: int
    remote_version: int
    local_updated_at: str
    remote_updated_at: str


class AtticEntry(BaseModel):
    """
    One discarded value.

    ``timestamp`` has microsecond precision and, together with
    ``entity_id``, uniquely identifies the entry.
    """

    entity_id: str
    timestamp: datetime
    field: str = Field(..., description="Field name, extensions.<ns>, or 'full'")
    lost_value: Any = None
    winner_source: Side
    loser_source: Side
    context: AtticContext

    model_config = ConfigDict(frozen=True)

    @field_validator("timestamp")
    @classmethod
    def to_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @field_validator("field")
    @classmethod
    def validate_field(cls, v: str) -> str:
        if not _FIELD_RE.match(v):
            raise ValueError(f"invalid attic field name: {v!r}")
        return v

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        data["timestamp"] = format_attic_timestamp(self.timestamp)
        return data


class AtticFilter(BaseModel):
    """Criteria for ``AtticArchive.list``. Unset criteria match everything."""

    entity_id: str | None = None
    field: str | None = None
    since: datetime | None = None


def format_attic_timestamp(value: datetime) -> str:
    """``2025-01-07T10:00:00.123456Z``"""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
