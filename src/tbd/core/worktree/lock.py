"""
Advisory lock around worktree mutation.

Two tbd invocations on the same machine must not create, repair or sync
the worktree at the same time. A ``SoftFileLock`` at .tbd/worktree.lock
serializes them. A lock left behind by a crashed process is broken when its
owner is no longer alive or it is older than the stale timeout.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import time
from pathlib import Path
from types import TracebackType
from typing import Any

from filelock import SoftFileLock, Timeout

from tbd.core.errors import LockTimeout

logger = logging.getLogger(__name__)


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


class WorktreeLock:
    """
    Reentrant (per instance) file lock with stale-lock cleanup.

    Example:
        >>> lock = WorktreeLock(Path(".tbd/worktree.lock"))
        >>> with lock:
        ...     manager.repair()
    """

    def __init__(
        self,
        path: Path,
        *,
        timeout_seconds: float = 30.0,
        stale_timeout_seconds: float = 600.0,
    ) -> None:
        self.path = path
        self.timeout = timeout_seconds
        self.stale_timeout = stale_timeout_seconds
        self.metadata_path = path.parent / f"{path.name}.owner.json"
        self._lock = SoftFileLock(str(path))

    @property
    def is_locked(self) -> bool:
        return bool(self._lock.is_locked)

    def acquire(self) -> None:
        """
        Raises:
            LockTimeout: If another live process holds the lock past the timeout.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self._lock.is_locked:
            self._lock.acquire()
            return

        try:
            self._lock.acquire(timeout=self.timeout)
        except Timeout:
            if not self._cleanup_if_stale():
                raise LockTimeout(
                    f"Timed out after {self.timeout:.0f}s waiting for {self.path}"
                ) from None
            try:
                self._lock.acquire(timeout=1.0)
            except Timeout:
                raise LockTimeout(f"Could not acquire {self.path}") from None
        self._write_metadata()

    def release(self) -> None:
        if not self._lock.is_locked:
            return
        self._lock.release()
        if not self._lock.is_locked:
            with contextlib.suppress(OSError):
                self.metadata_path.unlink()

    def __enter__(self) -> WorktreeLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def _write_metadata(self) -> None:
        payload = {"pid": os.getpid(), "created_ts": time.time()}
        self.metadata_path.write_text(json.dumps(payload), encoding="utf-8")

    def _cleanup_if_stale(self) -> bool:
        """Remove the lock if its owner is dead or it is older than the stale timeout."""
        if not self.path.exists():
            return True

        metadata: dict[str, Any] = {}
        if self.metadata_path.exists():
            try:
                metadata = json.loads(self.metadata_path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                metadata = {}

        pid = metadata.get("pid")
        owner_alive = _pid_alive(pid) if isinstance(pid, int) else True
        created = metadata.get("created_ts")
        if not isinstance(created, (int, float)):
            try:
                created = self.path.stat().st_mtime
            except OSError:
                return True
        age = time.time() - float(created)

        if owner_alive and age < self.stale_timeout:
            return False

        logger.warning(
            "Breaking stale lock %s (owner pid=%s, age=%.0fs)", self.path, pid, age
        )
        with contextlib.suppress(OSError):
            self.path.unlink()
        with contextlib.suppress(OSError):
            self.metadata_path.unlink()
        return True
