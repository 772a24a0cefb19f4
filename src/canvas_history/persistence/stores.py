"""Key-value stores the persistence adapter writes through."""

from __future__ import annotations

import asyncio
import os
import re
from pathlib import Path
from typing import Dict, Optional, Protocol

from canvas_history.errors import PersistenceError


class KeyValueStore(Protocol):
    """Async key-value boundary; backed by local storage or a remote service."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def remove(self, key: str) -> None:
        ...


class MemoryStore:
    """Process-local store, mostly for tests and previews."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self.data: Dict[str, str] = dict(initial or {})
        self.writes = 0

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.writes += 1
        self.data[key] = value

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)


_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class JsonFileStore:
    """One ``<key>.json`` file per key under ``directory``.

    Blocking file I/O runs in a worker thread; writes go through a temporary
    file and ``os.replace`` so readers never observe a partial document.
    """

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        if not key:
            raise PersistenceError("key cannot be empty", key=key)
        return self.directory / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    async def get(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        try:
            return await asyncio.to_thread(_read_text, path)
        except OSError as exc:
            raise PersistenceError(f"Failed to read {path}: {exc}", key=key) from exc

    async def set(self, key: str, value: str) -> None:
        path = self.path_for(key)
        try:
            await asyncio.to_thread(_write_text, path, value)
        except OSError as exc:
            raise PersistenceError(f"Failed to write {path}: {exc}", key=key) from exc

    async def remove(self, key: str) -> None:
        path = self.path_for(key)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as exc:
            raise PersistenceError(f"Failed to remove {path}: {exc}", key=key) from exc


def _read_text(path: Path) -> Optional[str]:
    if not path.exists():
        return None
    return path.read_text(encoding="utf-8")


def _write_text(path: Path, value: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_suffix(path.suffix + ".tmp")
    staging.write_text(value, encoding="utf-8")
    os.replace(staging, path)


__all__ = ["KeyValueStore", "MemoryStore", "JsonFileStore"]
