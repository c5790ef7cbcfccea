from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import orjson

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class KeyValueStore(Protocol):
    """Durable byte storage keyed by string; every call is a suspension point."""

    async def get(self, key: str) -> Optional[bytes]: ...

    async def set(self, key: str, value: bytes) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store, used by tests and for sessions that must not touch disk."""

    def __init__(self) -> None:
        self._data: Dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class FileStore:
    """One JSON file per key under ``directory``, written atomically."""

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    def _path(self, key: str) -> Path:
        return self._directory / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    def _read(self, path: Path) -> Optional[bytes]:
        if not path.exists():
            return None
        return path.read_bytes()

    def _write(self, path: Path, value: bytes) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        scratch = path.with_suffix(".tmp")
        scratch.write_bytes(value)
        scratch.replace(path)

    def _remove(self, path: Path) -> None:
        path.unlink(missing_ok=True)

    async def get(self, key: str) -> Optional[bytes]:
        return await asyncio.to_thread(self._read, self._path(key))

    async def set(self, key: str, value: bytes) -> None:
        await asyncio.to_thread(self._write, self._path(key), value)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._remove, self._path(key))


async def load_versioned(store: KeyValueStore, key: str, version: int) -> Optional[Any]:
    """Return the payload stored under ``key`` or ``None``.

    Undecodable bytes and envelopes written by another schema version are
    discarded so stale state is never misinterpreted.
    """

    raw = await store.get(key)
    if raw is None:
        return None
    try:
        envelope = orjson.loads(raw)
    except orjson.JSONDecodeError:
        logger.warning("Discarding undecodable state under %s", key)
        await store.delete(key)
        return None
    if not isinstance(envelope, dict) or envelope.get("version") != version:
        found = envelope.get("version") if isinstance(envelope, dict) else None
        logger.warning("Discarding state under %s: schema version %r, expected %s", key, found, version)
        await store.delete(key)
        return None
    return envelope.get("data")


async def save_versioned(store: KeyValueStore, key: str, version: int, data: Any) -> None:
    await store.set(key, orjson.dumps({"version": version, "data": data}))
