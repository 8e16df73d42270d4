from __future__ import annotations

import json
import os
import re
import tempfile
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

CURRENT_SESSION = "current_session"
SESSION_HISTORY = "session_history"
SCRAPED_DATA = "scraped_data"
SETTINGS = "settings"

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStore(ABC):
    """Abstract persistent key-value store for settings, checkpoints and payloads."""

    @abstractmethod
    def save(self, key: str, value: Any) -> None:
        """Persist ``value`` (JSON-serializable) under ``key``."""

    @abstractmethod
    def load(self, key: str) -> Optional[Any]:
        """Return the stored value, or None when absent."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``; missing keys are ignored."""


class MemoryStore(KeyValueStore):
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def save(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value, ensure_ascii=False)

    def load(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """One ``<key>.json`` file per key under ``directory``; writes are atomic replaces."""

    def __init__(self, directory: str) -> None:
        self._directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        if not _KEY_RE.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return os.path.join(self._directory, f"{key}.json")

    def save(self, key: str, value: Any) -> None:
        path = self._path(key)
        fd, tmp_path = tempfile.mkstemp(dir=self._directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(value, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def load(self, key: str) -> Optional[Any]:
        try:
            with open(self._path(key), "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None

    def delete(self, key: str) -> None:
        try:
            os.unlink(self._path(key))
        except FileNotFoundError:
            pass
