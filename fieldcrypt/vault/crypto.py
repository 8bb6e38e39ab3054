"""
Vault Crypto Core — Key material, key derivation and AEAD sealing.

Implements the primitives the field codec is built on:
- Password layer: PBKDF2-HMAC-SHA256(password, salt) → 256-bit session key
- Partition layer: HKDF(session_key, "fieldcrypt-partition:<label>") → partition key
- Sealing: AES-256-GCM → [nonce 12B][ciphertext + GCM tag 16B]

Security Note:
    Never log plaintext, ciphertext or key material. Log fingerprints only.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import hmac
import base64
import hashlib
import binascii
import logging
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import DecryptionError, EncryptionError, KeyDerivationError

logger = logging.getLogger("fieldcrypt.vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # GCM authentication tag
KEY_LENGTH = 32  # AES-256
DEFAULT_SALT_LENGTH = 16

# PBKDF2 iteration counts per KDF version. Stored envelopes and salts depend
# on these values: add a new version instead of editing an existing one.
KDF_ITERATIONS: dict[int, int] = {
    1: 100_000,
}
DEFAULT_KDF_VERSION = 1

_PARTITION_CONTEXT = "fieldcrypt-partition:"


class Key:
    """Opaque 256-bit symmetric key.

    The raw bytes are only reachable through ``raw``; ``repr`` shows a short
    fingerprint so keys can be correlated in logs without leaking material.
    """

    __slots__ = ("_raw",)

    def __init__(self, raw: bytes):
        if not isinstance(raw, (bytes, bytearray)):
            raise TypeError("Key material must be bytes")
        if len(raw) != KEY_LENGTH:
            raise ValueError(
                f"Key must be exactly {KEY_LENGTH} bytes, got {len(raw)}"
            )
        self._raw = bytes(raw)

    @property
    def raw(self) -> bytes:
        return self._raw

    @property
    def fingerprint(self) -> str:
        """First 8 hex chars of SHA-256 over the key, safe to log."""
        return hashlib.sha256(self._raw).hexdigest()[:8]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Key):
            return NotImplemented
        return hmac.compare_digest(self._raw, other._raw)

    def __hash__(self) -> int:
        return hash(self.fingerprint)

    def __repr__(self) -> str:
        return f"<Key fingerprint={self.fingerprint}>"

    def __reduce__(self):
        raise TypeError("Key objects cannot be pickled; use export_key()")


# ---------------------------------------------------------------------------
# Random material
# ---------------------------------------------------------------------------

def generate_salt(length: int = DEFAULT_SALT_LENGTH) -> bytes:
    """Return a cryptographically secure random salt."""
    if not 16 <= length <= 32:
        raise ValueError(f"Salt length must be between 16 and 32 bytes, got {length}")
    return os.urandom(length)


def generate_key() -> Key:
    """Generate a random 256-bit key."""
    return Key(os.urandom(KEY_LENGTH))


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(
    password: Union[str, bytes],
    salt: bytes,
    kdf_version: int = DEFAULT_KDF_VERSION,
) -> Key:
    """Derive a 256-bit key from a password using PBKDF2-HMAC-SHA256.

    Deterministic: the same password, salt and version always yield the
    same key.

    Args:
        password: User password (str is encoded as UTF-8).
        salt: Persisted per-profile salt.
        kdf_version: Entry of ``KDF_ITERATIONS`` to use.

    Returns:
        Derived Key.

    Raises:
        KeyDerivationError: On unknown version, empty salt or KDF failure.
    """
    if kdf_version not in KDF_ITERATIONS:
        raise KeyDerivationError(f"Unknown KDF version: {kdf_version}")
    if not salt:
        raise KeyDerivationError("Salt must not be empty")
    if isinstance(password, str):
        password = password.encode("utf-8")
    try:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=bytes(salt),
            iterations=KDF_ITERATIONS[kdf_version],
        )
        return Key(kdf.derive(password))
    except Exception as err:
        raise KeyDerivationError(f"PBKDF2 derivation failed: {err}") from err


def derive_partition_key(key: Key, label: str) -> Key:
    """Derive a partition key (room, topic...) from a session key with HKDF-SHA256.

    Pure function: nothing is cached, nothing is mutated.

    Args:
        key: Session key.
        label: Partition identifier used for domain separation.

    Returns:
        Derived partition Key.
    """
    if not isinstance(key, Key):
        raise KeyDerivationError("Partition derivation requires a Key")
    if not label:
        raise KeyDerivationError("Partition label must not be empty")
    try:
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=None,  # deterministic: the label provides separation
            info=f"{_PARTITION_CONTEXT}{label}".encode("utf-8"),
        )
        return Key(hkdf.derive(key.raw))
    except Exception as err:
        raise KeyDerivationError(
            f"Partition derivation failed for label {label!r}: {err}"
        ) from err


# ---------------------------------------------------------------------------
# Portable encoding (session storage only)
# ---------------------------------------------------------------------------

def export_key(key: Key) -> str:
    """Export a key as base64 of its raw bytes."""
    return base64.b64encode(key.raw).decode("ascii")


def import_key(data: str) -> Key:
    """Import a key previously produced by ``export_key``.

    Raises:
        KeyDerivationError: If data is not valid base64 of a 32-byte key.
    """
    try:
        raw = base64.b64decode(data, validate=True)
        return Key(raw)
    except (binascii.Error, ValueError, TypeError) as err:
        raise KeyDerivationError(f"Invalid exported key: {err}") from err


def encode_salt(salt: bytes) -> str:
    return base64.b64encode(salt).decode("ascii")


def decode_salt(data: str) -> bytes:
    """Decode a stored salt.

    Raises:
        KeyDerivationError: If the stored value is not a valid salt.
    """
    try:
        salt = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError, TypeError) as err:
        raise KeyDerivationError(f"Stored salt is not valid base64: {err}") from err
    if not 16 <= len(salt) <= 32:
        raise KeyDerivationError(
            f"Stored salt has invalid length: {len(salt)} bytes"
        )
    return salt


# ---------------------------------------------------------------------------
# AEAD sealing
# ---------------------------------------------------------------------------

def seal(data: bytes, key: Key, aad: Optional[bytes] = None) -> bytes:
    """Encrypt bytes with AES-256-GCM under a fresh random nonce.

    Format: [nonce 12B][encrypted_payload + GCM_tag 16B]
    """
    if not isinstance(key, Key):
        raise EncryptionError("Sealing requires a Key")
    try:
        nonce = os.urandom(NONCE_SIZE)
        ct = AESGCM(key.raw).encrypt(nonce, data, aad)
    except (OverflowError, ValueError, TypeError) as err:
        raise EncryptionError(f"AES-GCM encryption failed: {err}") from err
    return nonce + ct


def open_sealed(blob: bytes, key: Key, aad: Optional[bytes] = None) -> bytes:
    """Decrypt bytes produced by ``seal``.

    Raises:
        DecryptionError: On short input, wrong key or failed authentication.
    """
    _min = NONCE_SIZE + TAG_SIZE
    if len(blob) < _min:
        raise DecryptionError(
            f"sealed blob too short: {len(blob)} bytes (minimum {_min})"
        )
    if not isinstance(key, Key):
        raise DecryptionError("Opening requires a Key")
    nonce = blob[:NONCE_SIZE]
    ct = blob[NONCE_SIZE:]
    try:
        return AESGCM(key.raw).decrypt(nonce, ct, aad)
    except InvalidTag as err:
        raise DecryptionError("authentication failed (wrong key or tampered data)") from err
