"""
Atomic file writes.

Every on-disk write goes through a temporary file in the destination
directory, is fsynced, then renamed over the target with ``os.replace``.
A crash mid-write therefore leaves either the old file or the new one,
plus at worst an orphaned ``.tmp`` file which ``sweep_orphaned_temp_files``
removes later.
"""

from __future__ import annotations

import logging
import os
import tempfile
import time
from pathlib import Path

logger = logging.getLogger(__name__)

TEMP_PREFIX = ".tbd_"
TEMP_SUFFIX = ".tmp"

# Orphaned temp files older than this are removed by the sweep
ORPHAN_MAX_AGE_SECONDS = 60 * 60


def atomic_write_text(path: Path, content: str) -> None:
    """
    Write text to ``path`` atomically.

    Content is written verbatim (no newline translation), so LF-only
    content stays LF-only on every platform.

    Args:
        path: Destination file. Parent directories are created as needed.
        content: Text to write (UTF-8).
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def sweep_orphaned_temp_files(
    root: Path, max_age_seconds: float = ORPHAN_MAX_AGE_SECONDS
) -> list[Path]:
    """
    Delete temp files left behind by interrupted atomic writes.

    Only files matching the writer's own naming pattern are considered, and
    only when their mtime is older than ``max_age_seconds`` (a younger file
    may belong to a write still in progress).

    Returns:
        Paths that were removed.
    """
    if not root.exists():
        return []

    cutoff = time.time() - max_age_seconds
    removed: list[Path] = []
    for candidate in root.rglob(f"{TEMP_PREFIX}*{TEMP_SUFFIX}"):
        try:
            if candidate.is_file() and candidate.stat().st_mtime < cutoff:
                candidate.unlink()
                removed.append(candidate)
        except OSError as e:
            logger.warning("Could not remove orphaned temp file %s: %s", candidate, e)

    if removed:
        logger.info("Removed %d orphaned temp file(s) under %s", len(removed), root)
    return removed
