"""Durable client-side key-value storage.

The Bootstrap Sequencer and Logout Coordinator receive a store instead of
touching global state.  ``MemoryStore`` is the test fake; ``JSONFileStore``
is what the desktop client uses.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Protocol

__all__ = ["JSONFileStore", "KeyValueStore", "MemoryStore"]

logger = logging.getLogger("timetrack.session")


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """In-memory store.  Records write operations for assertions in tests."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self.writes: list[tuple[str, str, str | None]] = []

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self.writes.append(("set", key, value))

    def delete(self, key: str) -> None:
        self._data.pop(key, None)
        self.writes.append(("delete", key, None))

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)


class JSONFileStore:
    """Store backed by a single JSON object on disk.

    Every write rewrites the file through a temporary sibling and
    :func:`os.replace`, so a crash never leaves a half-written file.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()
        self._data: dict[str, str] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Session storage at %s is unreadable, starting empty: %s", self._path, exc)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Session storage at %s is not an object, starting empty", self._path)
            return {}
        return {str(k): str(v) for k, v in raw.items() if v is not None}

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2, sort_keys=True)
        os.replace(tmp, self._path)

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._flush()

    def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()
