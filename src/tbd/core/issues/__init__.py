"""
Issue models, file codec and storage.

Public API:
    - Issue, IssueStatus, IssueKind, Dependency: data models
    - encode_issue / decode_issue: canonical file format
    - content_hash: stable hash of an issue's content
    - IssueStore: issue files in a data directory

The IssueService (tbd.core.issues.service) builds on these together with
the attic and merge packages.
"""

from tbd.core.issues.codec import content_hash, decode_issue, encode_issue
from tbd.core.issues.models import Dependency, DependencyType, Issue, IssueKind, IssueStatus
from tbd.core.issues.store import IssueStore

__all__ = [
    "Dependency",
    "DependencyType",
    "Issue",
    "IssueKind",
    "IssueStatus",
    "IssueStore",
    "content_hash",
    "decode_issue",
    "encode_issue",
]
