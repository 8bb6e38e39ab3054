"""
Key-value stores used at the session and persistent storage boundaries.

Every store exposes the same coroutine API:
- ``get(name)`` — return the stored string or None
- ``set(name, value)`` — store a string
- ``remove(name)`` — delete an entry, no error if missing

``MemoryStorage`` and ``RedisStorage`` are session-scoped; ``FileStorage``
survives restarts and is meant for the salt only.
"""
import os
import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Any, Optional, Protocol, Union

import orjson

from .conf import REDIS_PREFIX

logger = logging.getLogger("fieldcrypt.storage")


class KeyValueStore(Protocol):
    async def get(self, name: str) -> Optional[str]:
        ...

    async def set(self, name: str, value: str) -> None:
        ...

    async def remove(self, name: str) -> None:
        ...


def _validate_name(name: str) -> None:
    """Validate a storage entry name.

    Raises:
        ValueError: If name is empty, too long, or contains ':'.
    """
    if not name:
        raise ValueError("Storage name cannot be empty")
    if len(name) > 255:
        raise ValueError("Storage name cannot exceed 255 characters")
    if ":" in name:
        raise ValueError("Storage name cannot contain ':'")


class MemoryStorage:
    """Process-memory store; everything is gone when the session object is."""

    def __init__(self, data: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(data or {})

    def __repr__(self) -> str:
        return f"<MemoryStorage entries={sorted(self._data)}>"

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, name: object) -> bool:
        return name in self._data

    async def get(self, name: str) -> Optional[str]:
        _validate_name(name)
        return self._data.get(name)

    async def set(self, name: str, value: str) -> None:
        _validate_name(name)
        if not isinstance(value, str):
            raise TypeError("Stored values must be strings")
        self._data[name] = value

    async def remove(self, name: str) -> None:
        _validate_name(name)
        self._data.pop(name, None)

    def clear(self) -> None:
        self._data.clear()


class RedisStorage:
    """Session-scoped store on top of an asyncio Redis client.

    Entries are written with ``setex`` so they expire with the session even
    if sign-out never runs.
    """

    def __init__(
        self,
        redis: Any,
        session_id: str,
        ttl: int = 3600,
        prefix: str = REDIS_PREFIX,
    ):
        if not session_id:
            raise ValueError("RedisStorage requires a session_id")
        self._redis = redis
        self._session_id = session_id
        self._ttl = ttl
        self._prefix = prefix

    def _redis_key(self, name: str) -> str:
        """Build Redis cache key."""
        return f"{self._prefix}:{self._session_id}:{name}"

    async def get(self, name: str) -> Optional[str]:
        _validate_name(name)
        value = await self._redis.get(self._redis_key(name))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, name: str, value: str) -> None:
        _validate_name(name)
        if not isinstance(value, str):
            raise TypeError("Stored values must be strings")
        await self._redis.setex(self._redis_key(name), self._ttl, value)

    async def remove(self, name: str) -> None:
        _validate_name(name)
        await self._redis.delete(self._redis_key(name))


class FileStorage:
    """Persistent store backed by a single JSON document.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace`` so a crash never leaves a half-written file.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()

    def __repr__(self) -> str:
        return f"<FileStorage path={self.path}>"

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        raw = self.path.read_bytes()
        if not raw.strip():
            return {}
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as err:
            raise RuntimeError(f"Corrupt storage file {self.path}: {err}") from err
        if not isinstance(data, dict):
            raise RuntimeError(f"Corrupt storage file {self.path}: expected an object")
        return data

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(orjson.dumps(data, option=orjson.OPT_SORT_KEYS))
            os.replace(tmp, self.path)
        except Exception:
            Path(tmp).unlink(missing_ok=True)
            raise

    async def get(self, name: str) -> Optional[str]:
        _validate_name(name)
        data = await asyncio.to_thread(self._read)
        return data.get(name)

    async def set(self, name: str, value: str) -> None:
        _validate_name(name)
        if not isinstance(value, str):
            raise TypeError("Stored values must be strings")

        def _update() -> None:
            data = self._read()
            data[name] = value
            self._write(data)

        await asyncio.to_thread(_update)
        logger.debug("Persisted entry %s to %s", name, self.path)

    async def remove(self, name: str) -> None:
        _validate_name(name)

        def _delete() -> None:
            data = self._read()
            if data.pop(name, None) is not None:
                self._write(data)

        await asyncio.to_thread(_delete)
