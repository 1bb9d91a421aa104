"""
Error taxonomy for tbd.

Every error carries a human-readable message and, for anything the caller
can act on, a ``hint`` naming the next action (a command to run). The hint
is part of ``str(error)`` so that agents reading only the message can still
recover without human judgment.
"""

from __future__ import annotations


class TbdError(Exception):
    """Base class for all tbd errors."""

    default_hint: str | None = None

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        self.message = message
        self.hint = hint if hint is not None else self.default_hint
        text = message
        if self.hint:
            text = f"{message}\n\n{self.hint}"
        super().__init__(text)


class NotInitializedError(TbdError):
    """Raised when the project has no .tbd/config.yml."""

    default_hint = "Run 'tbd init --prefix <name>' to initialize this repository."


class ValidationError(TbdError):
    """Malformed entity data or user input."""


class SchemaViolation(ValidationError):
    """An entity file does not match the issue schema."""

    def __init__(self, message: str, *, field: str | None = None, hint: str | None = None) -> None:
        self.field = field
        if field:
            message = f"Invalid value for '{field}': {message}"
        super().__init__(message, hint=hint)


class WorktreeMissingError(TbdError):
    """The sync worktree does not exist (or only a stale registry entry remains)."""

    default_hint = "Run 'tbd doctor --fix' (or 'tbd sync --fix') to recreate it."


class WorktreeCorruptedError(TbdError):
    """The sync worktree directory exists but is not a usable git checkout."""

    default_hint = (
        "Run 'tbd doctor --fix' (or 'tbd sync --fix') to back it up and recreate it."
    )


class SyncBranchError(TbdError):
    """The sync branch is missing or in an unexpected state."""

    default_hint = "Run 'tbd doctor' to inspect the sync branch."


class SyncFailed(TbdError):
    """A sync could not complete."""

    default_hint = "Run 'tbd sync --status' to inspect the state, then retry 'tbd sync'."

    def __init__(self, message: str, *, retryable: bool = False, hint: str | None = None) -> None:
        self.retryable = retryable
        super().__init__(message, hint=hint)


class MergeImmutableConflict(TbdError):
    """Two versions of an entity disagree on a field that can never change."""

    default_hint = (
        "The two records do not describe the same issue. Inspect both versions "
        "and resolve manually, then run 'tbd doctor'."
    )

    def __init__(
        self, entity_id: str, field: str, local_value: object, remote_value: object
    ) -> None:
        self.entity_id = entity_id
        self.field = field
        self.local_value = local_value
        self.remote_value = remote_value
        super().__init__(
            f"Immutable field '{field}' differs for {entity_id}: "
            f"local={local_value!r} remote={remote_value!r}"
        )


class NotFound(TbdError):
    """An ID or attic entry could not be resolved."""

    default_hint = "Run 'tbd list' to see valid issue IDs."


class AlreadyBound(TbdError):
    """A short ID is already mapped to a different internal ID."""

    def __init__(self, short_id: str, existing: str, requested: str) -> None:
        self.short_id = short_id
        self.existing = existing
        self.requested = requested
        super().__init__(
            f"Short ID '{short_id}' is already bound to {existing}, cannot bind to {requested}",
            hint="Generate a new short ID and retry.",
        )


class LockTimeout(TbdError):
    """Another tbd process holds the worktree lock."""

    default_hint = "Wait for the other tbd command to finish, then retry."
