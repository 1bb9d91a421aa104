"""
Importers from other issue trackers.

Public API:
    - BeadsImporter: Import Beads JSONL exports, preserving short IDs
    - import_beads_file: One-call import of a .beads/issues.jsonl file
    - ImportResult: Counts and ID map of an import run
"""

from tbd.core.imports.beads import (
    DEFAULT_BEADS_FILE,
    BeadsImporter,
    ImportResult,
    import_beads,
    import_beads_file,
    load_beads_jsonl,
    parse_beads_jsonl,
)

__all__ = [
    "DEFAULT_BEADS_FILE",
    "BeadsImporter",
    "ImportResult",
    "import_beads",
    "import_beads_file",
    "load_beads_jsonl",
    "parse_beads_jsonl",
]
