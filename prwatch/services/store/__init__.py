"""Local persistence for refresh state, PR cache and preferences (.prwatch/)."""

from prwatch.services.store.kv_store import KeyValueStore, MemoryStore, StoreError, YamlFileStore
from prwatch.services.store.state_store import (
    PREFERENCES_KEY,
    REFRESH_STATE_KEY,
    load_preferences,
    load_refresh_state,
    save_preferences,
    save_refresh_state,
)

__all__ = [
    "KeyValueStore",
    "MemoryStore",
    "PREFERENCES_KEY",
    "REFRESH_STATE_KEY",
    "StoreError",
    "YamlFileStore",
    "load_preferences",
    "load_refresh_state",
    "save_preferences",
    "save_refresh_state",
]
