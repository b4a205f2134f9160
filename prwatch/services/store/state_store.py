"""Typed access to the refresh state and preferences kept in a KeyValueStore.

Loading never raises: missing or invalid data yields an empty model.
Saving returns False on failure so callers can keep working in memory.
"""

import logging

from pydantic import ValidationError

from prwatch.models import Preferences, RefreshState
from prwatch.services.store.kv_store import KeyValueStore, StoreError

REFRESH_STATE_KEY = "refresh_state"
PREFERENCES_KEY = "preferences"

LOG = logging.getLogger("prwatch.services.store.state_store")


def load_refresh_state(store: KeyValueStore) -> RefreshState:
    """Load persisted timestamps and cached PRs. Empty state if missing or invalid."""
    data = store.load(REFRESH_STATE_KEY)
    if not data:
        return RefreshState()
    try:
        return RefreshState.model_validate(data)
    except ValidationError as e:
        LOG.warning("Ignoring invalid cached refresh state: %s", e)
        return RefreshState()


def save_refresh_state(store: KeyValueStore, state: RefreshState) -> bool:
    """Persist refresh state. Returns False (and logs a warning) on failure."""
    try:
        store.save(REFRESH_STATE_KEY, state.model_dump(mode="json"))
    except StoreError as e:
        LOG.warning("Could not persist refresh state: %s", e)
        return False
    LOG.debug(
        "Persisted refresh state: %d repos, %d PRs",
        len(state.last_updates),
        sum(len(prs) for prs in state.cached_prs.values()),
    )
    return True


def load_preferences(store: KeyValueStore) -> Preferences:
    data = store.load(PREFERENCES_KEY)
    if not data:
        return Preferences()
    try:
        return Preferences.model_validate(data)
    except ValidationError as e:
        LOG.warning("Ignoring invalid preferences: %s", e)
        return Preferences()


def save_preferences(store: KeyValueStore, preferences: Preferences) -> bool:
    try:
        store.save(PREFERENCES_KEY, preferences.model_dump(mode="json"))
    except StoreError as e:
        LOG.warning("Could not persist preferences: %s", e)
        return False
    return True
