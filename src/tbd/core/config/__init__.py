"""
Configuration management for tbd.

Loads .tbd/config.yml with env var overrides (TBD_*), plus the local
state file and the synced dataset metadata.
"""

from tbd.core.config.loader import (
    clear_cache,
    decode_meta,
    encode_meta,
    find_project_root,
    init_config,
    load_config,
    load_state,
    save_config,
    save_state,
)
from tbd.core.config.models import (
    DisplayConfig,
    LocalState,
    Meta,
    SettingsConfig,
    SyncConfig,
    TbdConfig,
)

__all__ = [
    "DisplayConfig",
    "LocalState",
    "Meta",
    "SettingsConfig",
    "SyncConfig",
    "TbdConfig",
    "clear_cache",
    "decode_meta",
    "encode_meta",
    "find_project_root",
    "init_config",
    "load_config",
    "load_state",
    "save_config",
    "save_state",
]
