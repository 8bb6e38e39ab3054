"""Shared fixtures for FieldCrypt tests."""
import pytest

from fieldcrypt.storage import MemoryStorage
from fieldcrypt.vault.crypto import Key, generate_key
from fieldcrypt.vault.key_manager import KeyManager


class FakeRedis:
    """Minimal asyncio Redis stand-in returning bytes like the real client."""

    def __init__(self):
        self.data: dict[str, bytes] = {}
        self.ttls: dict[str, int] = {}

    async def setex(self, key, ttl, value):
        self.data[key] = value.encode("utf-8") if isinstance(value, str) else value
        self.ttls[key] = ttl

    async def get(self, key):
        return self.data.get(key)

    async def delete(self, key):
        self.ttls.pop(key, None)
        return 1 if self.data.pop(key, None) is not None else 0


@pytest.fixture
def key() -> Key:
    return generate_key()


@pytest.fixture
def other_key() -> Key:
    return generate_key()


@pytest.fixture
def session_store():
    return MemoryStorage()


@pytest.fixture
def persistent_store():
    return MemoryStorage()


@pytest.fixture
def manager(session_store, persistent_store):
    """A fresh manager in the NO_KEY state."""
    return KeyManager(session_store, persistent_store)


@pytest.fixture
def fake_redis():
    return FakeRedis()
