"""Durable key-value storage abstraction and local filesystem implementation."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Protocol

from slugify import slugify

if TYPE_CHECKING:
    from pathlib import Path


class KeyValueStore(Protocol):
    """Protocol for string key-value storage backends."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...


class LocalKeyValueStore:
    """Local filesystem implementation of KeyValueStore.

    Each key is one UTF-8 file: {root}/{slug(key)}.json
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    async def get(self, key: str) -> str | None:
        """Return the stored value, or None if the key was never set."""
        path = self.path_for(key)
        if not path.exists():
            return None
        return await asyncio.to_thread(path.read_text, encoding="utf-8")

    async def set(self, key: str, value: str) -> None:
        """Overwrite the value for a key, replacing the file atomically."""
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        await asyncio.to_thread(tmp_path.write_text, value, encoding="utf-8")
        tmp_path.replace(path)

    def path_for(self, key: str) -> Path:
        """Return the file backing a key."""
        return self.root / f"{self._slugify_key(key)}.json"

    @staticmethod
    def _slugify_key(key: str) -> str:
        """Convert a storage key to a filesystem-safe slug, max 80 chars."""
        slug = str(slugify(key, max_length=80))
        if not slug:
            msg = f"Storage key {key!r} has no usable characters"
            raise ValueError(msg)
        return slug


class InMemoryKeyValueStore:
    """Dict-backed KeyValueStore for previews and tests."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value
