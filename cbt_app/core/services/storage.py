"""Device-scoped key-value storage for session snapshots and pending results.

Values are JSON text, mirroring browser local storage: callers serialize and
parse themselves so that a corrupted value can be told apart from a missing one.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging
import os
from pathlib import Path
import re
from threading import Lock

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")


class KeyValueStore(ABC):
    @abstractmethod
    def get(self, key: str) -> str | None: ...

    @abstractmethod
    def set(self, key: str, value: str) -> None: ...

    @abstractmethod
    def remove(self, key: str) -> None: ...

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]: ...


class MemoryStore(KeyValueStore):
    """Process-local store, used by tests and ephemeral runs."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}
        self._lock = Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(key for key in self._items if key.startswith(prefix))


class JsonFileStore(KeyValueStore):
    """One file per key under `directory`; writes replace the file atomically."""

    _SUFFIX = ".json"

    def __init__(self, directory: Path) -> None:
        self._directory = directory.resolve()
        self._directory.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    def get(self, key: str) -> str | None:
        path = self._path_for(key)
        with self._lock:
            try:
                return path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None

    def set(self, key: str, value: str) -> None:
        path = self._path_for(key)
        temp_path = path.with_name(f".{path.name}.tmp")
        with self._lock:
            temp_path.write_text(value, encoding="utf-8")
            os.replace(temp_path, path)

    def remove(self, key: str) -> None:
        path = self._path_for(key)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                pass

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            names = [
                path.name[: -len(self._SUFFIX)]
                for path in self._directory.glob(f"*{self._SUFFIX}")
                if not path.name.startswith(".")
            ]
        return sorted(name for name in names if name.startswith(prefix))

    def _path_for(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self._directory / f"{key}{self._SUFFIX}"
