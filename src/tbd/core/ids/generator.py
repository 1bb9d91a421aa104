"""
ID generation.

Internal IDs are ``<type>-<ulid>``: a ULID (48-bit millisecond timestamp +
80 random bits) in lowercase Crockford base32. IDs generated by one process
are strictly increasing even within the same millisecond, so their
lexicographic order is their creation order.

Short IDs are random base-36 strings used as human-facing aliases; their
uniqueness is enforced against the mapping table by the caller
(see ``IdMapping.generate_unique_short_id``).
"""

from __future__ import annotations

import re
import secrets
import string
import threading

from ulid import ULID

INTERNAL_ID_PREFIX = "is"
ULID_LENGTH = 26

SHORT_ID_ALPHABET = string.digits + string.ascii_lowercase
DEFAULT_SHORT_ID_LENGTH = 4

_ULID_RE = re.compile(r"^[0-9a-z]{26}$")
_INTERNAL_RE = re.compile(r"^[a-z]+-[0-9a-z]{26}$")
_SHORT_ID_RE = re.compile(r"^[0-9a-z]+$")

_lock = threading.Lock()
_last_value = 0


def _next_monotonic_ulid() -> ULID:
    global _last_value
    with _lock:
        value = int(ULID())
        if value <= _last_value:
            value = _last_value + 1
        _last_value = value
        return ULID.from_int(value)


def new_ulid() -> str:
    """Return a new lowercase ULID string, monotonic within this process."""
    return str(_next_monotonic_ulid()).lower()


def new_internal_id(prefix: str = INTERNAL_ID_PREFIX) -> str:
    """
    Generate a new internal ID.

    Example:
        >>> new_internal_id()  # doctest: +SKIP
        'is-01hx5zzkbkactav9wevgemmvrz'
    """
    return f"{prefix}-{new_ulid()}"


def new_short_id(length: int = DEFAULT_SHORT_ID_LENGTH) -> str:
    """Generate a random base-36 short ID (not checked for uniqueness)."""
    if length < 1:
        raise ValueError("short ID length must be positive")
    return "".join(secrets.choice(SHORT_ID_ALPHABET) for _ in range(length))


def is_internal_id(value: str) -> bool:
    return bool(_INTERNAL_RE.match(value))


def is_ulid(value: str) -> bool:
    return bool(_ULID_RE.match(value))


def is_short_id(value: str) -> bool:
    return bool(_SHORT_ID_RE.match(value))


def ulid_from_internal_id(internal_id: str) -> str:
    """``is-01hx...`` -> ``01hx...``"""
    return internal_id.split("-", 1)[1] if "-" in internal_id else internal_id


def make_internal_id(ulid: str, prefix: str = INTERNAL_ID_PREFIX) -> str:
    return f"{prefix}-{ulid}"


def extract_short_id(value: str) -> str:
    """
    Strip an optional ``<prefix>-`` from a display or foreign ID.

    Example:
        >>> extract_short_id("tbd-100")
        '100'
        >>> extract_short_id("a7k2")
        'a7k2'
    """
    value = value.strip().lower()
    match = re.match(r"^[a-z][a-z0-9]*-(.+)$", value)
    return match.group(1) if match else value
