"""
Field-level merge of divergent issue versions.

Public API:
    - MergeEngine: merge_entity(local, remote, base=None) -> MergeOutcome
    - FIELD_STRATEGIES: field -> MergeStrategy table
"""

from tbd.core.merge.engine import MergeEngine, MergeOutcome, issue_values
from tbd.core.merge.strategies import FIELD_STRATEGIES, MergeStrategy

__all__ = ["FIELD_STRATEGIES", "MergeEngine", "MergeOutcome", "MergeStrategy", "issue_values"]
