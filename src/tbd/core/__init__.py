"""Core business logic for tbd (storage, ids, worktree, merge, sync)."""
