"""
Canonical on-disk locations.

Layout inside a repository::

    .tbd/
      config.yml                 committed on the main branch
      state.yml                  local only (gitignored)
      worktree.lock              local only
      backups/                   local only, corrupted worktree backups
      data-sync-worktree/        hidden checkout of the sync branch
        .tbd/data-sync/
          meta.yml
          issues/<internal-id>.md
          mappings/ids.yml
          attic/<internal-id>/<timestamp>_<field>.yml
      data-sync/                 fallback data dir (tests without git only)

All paths here are relative to the repository root unless noted.
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath

TBD_DIR = ".tbd"
CONFIG_FILE = f"{TBD_DIR}/config.yml"
STATE_FILE = f"{TBD_DIR}/state.yml"
LOCK_FILE = f"{TBD_DIR}/worktree.lock"
BACKUPS_DIR = f"{TBD_DIR}/backups"
GITIGNORE_FILE = f"{TBD_DIR}/.gitignore"

WORKTREE_DIR_NAME = "data-sync-worktree"
WORKTREE_DIR = f"{TBD_DIR}/{WORKTREE_DIR_NAME}"

DATA_SYNC_DIR_NAME = "data-sync"
# Path of the data directory inside the sync branch tree (and inside the worktree)
DATA_SYNC_DIR = f"{TBD_DIR}/{DATA_SYNC_DIR_NAME}"

ISSUES_DIR_NAME = "issues"
MAPPINGS_DIR_NAME = "mappings"
ATTIC_DIR_NAME = "attic"
META_FILE_NAME = "meta.yml"
IDS_FILE_NAME = "ids.yml"

SYNC_BRANCH = "tbd-sync"

GITIGNORE_ENTRIES = [
    f"{WORKTREE_DIR_NAME}/",
    f"{DATA_SYNC_DIR_NAME}/",
    "backups/",
    "state.yml",
    "worktree.lock*",
]


def issue_path(data_dir: Path, issue_id: str) -> Path:
    """Path of an issue file inside a data directory."""
    return data_dir / ISSUES_DIR_NAME / f"{issue_id}.md"


def ids_mapping_path(data_dir: Path) -> Path:
    return data_dir / MAPPINGS_DIR_NAME / IDS_FILE_NAME


def attic_dir(data_dir: Path) -> Path:
    return data_dir / ATTIC_DIR_NAME


def meta_path(data_dir: Path) -> Path:
    return data_dir / META_FILE_NAME


def tree_path(*parts: str) -> str:
    """Path of a file inside the sync branch tree (always POSIX separators)."""
    return str(PurePosixPath(DATA_SYNC_DIR, *parts))


def issue_tree_path(issue_id: str) -> str:
    return tree_path(ISSUES_DIR_NAME, f"{issue_id}.md")


IDS_TREE_PATH = tree_path(MAPPINGS_DIR_NAME, IDS_FILE_NAME)
META_TREE_PATH = tree_path(META_FILE_NAME)
