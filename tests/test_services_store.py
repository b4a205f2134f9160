"""Tests for the key-value store and typed state access (refresh state, preferences)."""

from pathlib import Path
from unittest.mock import patch

import pytest
from conftest import NOW_MS, make_pr, make_repo

from prwatch.models import Preferences, RefreshState
from prwatch.services.store import (
    PREFERENCES_KEY,
    REFRESH_STATE_KEY,
    MemoryStore,
    StoreError,
    YamlFileStore,
    load_preferences,
    load_refresh_state,
    save_preferences,
    save_refresh_state,
)


class TestYamlFileStore:
    """One YAML file per key under the base dir."""

    def test_save_and_load(self, tmp_path: Path) -> None:
        store = YamlFileStore(tmp_path / ".prwatch")
        store.save("sample", {"a": 1, "items": ["x", "y"]})
        path = tmp_path / ".prwatch" / "sample.yaml"
        assert path.exists()
        assert not (tmp_path / ".prwatch" / "sample.yaml.tmp").exists()
        assert store.load("sample") == {"a": 1, "items": ["x", "y"]}

    def test_missing_key_is_none(self, tmp_path: Path) -> None:
        assert YamlFileStore(tmp_path).load("nothing") is None

    def test_corrupt_file_is_none(self, tmp_path: Path) -> None:
        (tmp_path / "broken.yaml").write_text("a: [unclosed", encoding="utf-8")
        assert YamlFileStore(tmp_path).load("broken") is None

    def test_write_failure_raises_store_error(self, tmp_path: Path) -> None:
        store = YamlFileStore(tmp_path)
        with patch("prwatch.services.store.kv_store.os.replace", side_effect=OSError("read-only")):
            with pytest.raises(StoreError, match="read-only"):
                store.save("k", {"a": 1})


class TestRefreshState:
    """Refresh state round trip through a store."""

    def test_save_and_load(self, tmp_path: Path) -> None:
        repo = make_repo("api")
        pr = make_pr(repo, 3, assignees=["bob"])
        state = RefreshState(
            last_updates={repo.url: NOW_MS},
            pr_last_updates={f"{repo.url}#3": NOW_MS},
            cached_prs={repo.url: [pr]},
        )
        store = YamlFileStore(tmp_path)
        assert save_refresh_state(store, state) is True
        assert (tmp_path / f"{REFRESH_STATE_KEY}.yaml").exists()

        loaded = load_refresh_state(store)
        assert loaded.last_updates == {repo.url: NOW_MS}
        assert loaded.cached_prs[repo.url][0] == pr

    def test_empty_and_invalid_state(self) -> None:
        store = MemoryStore()
        assert load_refresh_state(store) == RefreshState()
        store.save(REFRESH_STATE_KEY, {"last_updates": "not-a-dict"})
        assert load_refresh_state(store) == RefreshState()

    def test_save_failure_returns_false(self) -> None:
        class Broken(MemoryStore):
            def save(self, key, value):
                raise StoreError("disk full")

        assert save_refresh_state(Broken(), RefreshState()) is False


class TestPreferences:
    """Preferences blob."""

    def test_default_is_all_repositories(self) -> None:
        assert load_preferences(MemoryStore()).selected_repos is None

    def test_round_trip(self) -> None:
        store = MemoryStore()
        assert save_preferences(store, Preferences(selected_repos=["api"])) is True
        assert store.load(PREFERENCES_KEY) == {"selected_repos": ["api"]}
        assert load_preferences(store).selected_repos == ["api"]
