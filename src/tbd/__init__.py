"""
tbd - Git-native issue tracking

Issues are Markdown files with YAML front matter, stored on a dedicated
sync branch and checked out in a hidden worktree so they never touch the
working branch.
"""

__version__ = "0.3.0"

# Re-export core models for convenience
from tbd.core.config.models import TbdConfig
from tbd.core.issues.models import Issue, IssueKind, IssueStatus

__all__ = ["Issue", "IssueKind", "IssueStatus", "TbdConfig", "__version__"]
