"""
Git access for tbd.

Public API:
    - GitClient: the single seam through which git subprocesses run
    - GitError: raised for failed or timed-out git commands
"""

from tbd.core.git.client import GitClient, GitError, TreeEntry

__all__ = ["GitClient", "GitError", "TreeEntry"]
