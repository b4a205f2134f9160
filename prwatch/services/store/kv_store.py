"""Key-value store for dashboard state in .prwatch/ as YAML files.

One file per key: {key}.yaml. Values are plain JSON-compatible data
(dicts, lists, str, numbers); models are dumped with model_dump(mode="json").
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict

import yaml

LOG = logging.getLogger("prwatch.services.store.kv_store")


class StoreError(Exception):
    """Raised when a value cannot be written to the store."""


class KeyValueStore(ABC):
    """Durable key-value storage capability."""

    @abstractmethod
    def load(self, key: str) -> Any | None:
        """Return the stored value or None when missing or unreadable."""
        ...

    @abstractmethod
    def save(self, key: str, value: Any) -> None:
        """Store value under key. Raises StoreError on failure."""
        ...


class YamlFileStore(KeyValueStore):
    """Stores each key in {base_dir}/{key}.yaml."""

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _path(self, key: str) -> Path:
        return self._base_dir / f"{key}.yaml"

    def load(self, key: str) -> Any | None:
        path = self._path(key)
        if not path.is_file():
            return None
        try:
            return yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            LOG.warning("Failed to load %s: %s", path, e)
            return None

    def save(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".yaml.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            raw = yaml.safe_dump(
                value,
                default_flow_style=False,
                allow_unicode=True,
                sort_keys=False,
                width=1000,
            )
            tmp.write_text(raw, encoding="utf-8")
            os.replace(tmp, path)
        except (OSError, yaml.YAMLError) as e:
            raise StoreError(f"Failed to save {path}: {e}") from e
        LOG.debug("Saved %s to %s", key, path)


class MemoryStore(KeyValueStore):
    """In-process store (no durability); used when no data dir is wanted."""

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}

    def load(self, key: str) -> Any | None:
        return self._data.get(key)

    def save(self, key: str, value: Any) -> None:
        self._data[key] = value
