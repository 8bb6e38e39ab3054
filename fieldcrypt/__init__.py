"""FieldCrypt.

Encrypts selected record fields with a session-bound key.
"""
from .version import __version__
from .exceptions import (
    FieldCryptError,
    KeyDerivationError,
    DecryptionError,
    EncryptionError,
    KeyUnavailableError,
)
from .storage import MemoryStorage, RedisStorage, FileStorage
from .vault import KeyManager, VaultConfig

__all__ = [
    "__version__",
    "FieldCryptError",
    "KeyDerivationError",
    "DecryptionError",
    "EncryptionError",
    "KeyUnavailableError",
    "MemoryStorage",
    "RedisStorage",
    "FileStorage",
    "KeyManager",
    "VaultConfig",
]
