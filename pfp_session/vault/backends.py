"""
Vault Backends — Persistence media for the encrypted store.

A backend is a flat, asynchronous, case-sensitive string-keyed store:
- ``get(names)`` — one name, a list of names, or ``None`` for everything
- ``set(items)`` — write a mapping of name → value
- ``remove(names)`` — drop one or many names

Backends know nothing about encryption; they persist whatever the
encrypted store hands them.
"""
import os
import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Any, Optional, Protocol, Union

import orjson

from .crypto import to_jsonable, from_jsonable

logger = logging.getLogger("pfp.vault")

Names = Union[str, list[str], None]


class StorageBackend(Protocol):
    """Persistence medium consumed by ``EncryptedStore``."""

    async def get(self, names: Names = None) -> dict[str, Any]: ...

    async def set(self, items: dict[str, Any]) -> None: ...

    async def remove(self, names: Union[str, list[str]]) -> None: ...


def _as_list(names: Union[str, list[str]]) -> list[str]:
    return [names] if isinstance(names, str) else list(names)


class MemoryBackend:
    """In-process backend, used by default and in tests."""

    def __init__(self, data: Optional[dict[str, Any]] = None):
        self.data: dict[str, Any] = dict(data or {})

    async def get(self, names: Names = None) -> dict[str, Any]:
        if names is None:
            return dict(self.data)
        return {
            name: self.data[name] for name in _as_list(names) if name in self.data
        }

    async def set(self, items: dict[str, Any]) -> None:
        self.data.update(items)

    async def remove(self, names: Union[str, list[str]]) -> None:
        for name in _as_list(names):
            self.data.pop(name, None)


class FileBackend:
    """JSON document on disk, rewritten atomically on every change.

    Security Note:
        The file holds salts in plaintext and everything else encrypted;
        it is still created with owner-only permissions.
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._lock = asyncio.Lock()
        self._cache: Optional[dict[str, Any]] = None

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        raw = orjson.loads(self._path.read_bytes())
        return {name: from_jsonable(value) for name, value in raw.items()}

    def _write(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = orjson.dumps(
            {name: to_jsonable(value) for name, value in data.items()}
        )
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".pfp-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
            os.chmod(tmp, 0o600)
            os.replace(tmp, self._path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    async def _load(self) -> dict[str, Any]:
        if self._cache is None:
            self._cache = await asyncio.to_thread(self._read)
            logger.debug("Loaded %d item(s) from %s", len(self._cache), self._path)
        return self._cache

    async def get(self, names: Names = None) -> dict[str, Any]:
        data = await self._load()
        if names is None:
            return dict(data)
        return {name: data[name] for name in _as_list(names) if name in data}

    async def set(self, items: dict[str, Any]) -> None:
        async with self._lock:
            data = dict(await self._load())
            data.update(items)
            await asyncio.to_thread(self._write, data)
            self._cache = data

    async def remove(self, names: Union[str, list[str]]) -> None:
        async with self._lock:
            data = dict(await self._load())
            for name in _as_list(names):
                data.pop(name, None)
            await asyncio.to_thread(self._write, data)
            self._cache = data
