"""
Timestamp helpers.

All persisted timestamps are UTC with millisecond precision and a trailing
``Z`` (``2025-01-07T10:00:00.000Z``).
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

# Fractional seconds of any precision (e.g. RFC 3339 nanoseconds)
_FRACTION_RE = re.compile(r"\.(\d+)")


def utc_now() -> datetime:
    """Current time in UTC, truncated to milliseconds."""
    return normalize_datetime(datetime.now(timezone.utc))


def normalize_datetime(value: datetime) -> datetime:
    """Convert to UTC (naive values are assumed UTC) and truncate to ms."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def format_timestamp(value: datetime) -> str:
    value = normalize_datetime(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 string (``Z`` or offset suffix) into a UTC datetime."""
    if isinstance(value, datetime):
        return normalize_datetime(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda m: "." + (m.group(1) + "000000")[:6], text, count=1)
    return normalize_datetime(datetime.fromisoformat(text))
