"""Key-value store capability consumed by every stateful component.

The store is injected rather than accessed globally so tests can swap in
:class:`MemoryStore`.
"""

from __future__ import annotations

import asyncio
import copy
import json
from pathlib import Path
from typing import Any, Protocol

__all__ = ["JsonFileStore", "KeyValueStore", "MemoryStore", "StoreError"]


class StoreError(RuntimeError):
    """Raised when the backing store cannot be read or written."""


class KeyValueStore(Protocol):
    async def get(self, keys: list[str]) -> dict[str, Any]:
        """Return the stored values for ``keys``; missing keys are omitted."""
        ...

    async def set(self, values: dict[str, Any]) -> None:
        """Write ``values`` (shallow merge over existing keys)."""
        ...


class MemoryStore:
    """In-process store; values are deep-copied on the way in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial or {})

    async def get(self, keys: list[str]) -> dict[str, Any]:
        return {k: copy.deepcopy(self._data[k]) for k in keys if k in self._data}

    async def set(self, values: dict[str, Any]) -> None:
        self._data.update(copy.deepcopy(values))

    def dump(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)


class JsonFileStore:
    """Durable store backed by a single JSON document on disk."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            msg = f"failed to read state file {self.path}: {e}"
            raise StoreError(msg) from e
        if not isinstance(data, dict):
            msg = f"state file {self.path} does not contain an object"
            raise StoreError(msg)
        return data

    def _write(self, values: dict[str, Any]) -> None:
        data = self._read()
        data.update(values)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            tmp_path.replace(self.path)
        except (OSError, TypeError) as e:
            msg = f"failed to write state file {self.path}: {e}"
            raise StoreError(msg) from e

    async def get(self, keys: list[str]) -> dict[str, Any]:
        data = await asyncio.to_thread(self._read)
        return {k: data[k] for k in keys if k in data}

    async def set(self, values: dict[str, Any]) -> None:
        await asyncio.to_thread(self._write, values)
