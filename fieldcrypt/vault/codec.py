"""
Field Codec — Envelope wire format and object-field helpers.

Envelopes are self-identifying strings, safe for any text column:
- ``ENC:``  base64([nonce 12B][ciphertext + tag])                 (key supplied)
- ``ENCP:`` base64([kdf_version 1B][salt 16B][nonce 12B][ciphertext + tag])
  (key derived from a password at encrypt time)

The tag is bound to the ciphertext as associated data.

Security Note:
    Never log field values. Only field names are logged on failure.
"""
import base64
import binascii
import logging
from collections.abc import Iterable, Mapping
from typing import Any, Union

from pydantic import BaseModel

from ..exceptions import DecryptionError, KeyDerivationError
from .crypto import (
    DEFAULT_KDF_VERSION,
    DEFAULT_SALT_LENGTH,
    KDF_ITERATIONS,
    NONCE_SIZE,
    TAG_SIZE,
    Key,
    derive_key,
    generate_salt,
    open_sealed,
    seal,
)

logger = logging.getLogger("fieldcrypt.vault")

KEY_TAG = "ENC"
PASSWORD_TAG = "ENCP"
KEY_PREFIX = f"{KEY_TAG}:"
PASSWORD_PREFIX = f"{PASSWORD_TAG}:"

ProtectedObject = Union[Mapping[str, Any], BaseModel]


def is_protected(value: Any) -> bool:
    """Return True if value carries an envelope prefix. No crypto involved."""
    return isinstance(value, str) and (
        value.startswith(KEY_PREFIX) or value.startswith(PASSWORD_PREFIX)
    )


def _b64decode(payload: str) -> bytes:
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as err:
        raise DecryptionError(f"envelope payload is not valid base64: {err}") from err


def _to_text(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as err:
        raise DecryptionError("decrypted payload is not valid UTF-8") from err


# ---------------------------------------------------------------------------
# Single values
# ---------------------------------------------------------------------------

def encrypt_value(plaintext: str, key: Key) -> str:
    """Encrypt a text value into an ``ENC:`` envelope."""
    if not isinstance(plaintext, str):
        raise TypeError(f"Only text values can be encrypted, got {type(plaintext).__name__}")
    blob = seal(plaintext.encode("utf-8"), key, KEY_TAG.encode("ascii"))
    return KEY_PREFIX + base64.b64encode(blob).decode("ascii")


def decrypt_value(envelope: str, key: Key, allow_legacy: bool = False) -> str:
    """Decrypt an ``ENC:`` envelope.

    Args:
        envelope: Envelope string.
        key: Key the envelope was sealed with.
        allow_legacy: Also accept unprefixed ``base64(nonce ‖ ct)`` values
            written by older clients.

    Raises:
        DecryptionError: If the value is not a well-formed envelope for key.
    """
    if not isinstance(envelope, str):
        raise DecryptionError("envelope must be a string")
    if envelope.startswith(KEY_PREFIX):
        blob = _b64decode(envelope[len(KEY_PREFIX):])
        return _to_text(open_sealed(blob, key, KEY_TAG.encode("ascii")))
    if envelope.startswith(PASSWORD_PREFIX):
        raise DecryptionError("password envelope cannot be opened with a key")
    if allow_legacy:
        blob = _b64decode(envelope)
        return _to_text(open_sealed(blob, key))
    raise DecryptionError("value is not an envelope")


def encrypt_with_password(
    plaintext: str,
    password: Union[str, bytes],
    kdf_version: int = DEFAULT_KDF_VERSION,
) -> str:
    """Encrypt a text value into an ``ENCP:`` envelope with a fresh embedded salt."""
    if not isinstance(plaintext, str):
        raise TypeError(f"Only text values can be encrypted, got {type(plaintext).__name__}")
    salt = generate_salt(DEFAULT_SALT_LENGTH)
    key = derive_key(password, salt, kdf_version)
    blob = seal(plaintext.encode("utf-8"), key, PASSWORD_TAG.encode("ascii"))
    header = bytes([kdf_version]) + salt
    return PASSWORD_PREFIX + base64.b64encode(header + blob).decode("ascii")


def decrypt_with_password(envelope: str, password: Union[str, bytes]) -> str:
    """Decrypt an ``ENCP:`` envelope.

    Raises:
        DecryptionError: On malformed framing, unknown KDF version or wrong password.
    """
    if not isinstance(envelope, str) or not envelope.startswith(PASSWORD_PREFIX):
        raise DecryptionError("value is not a password envelope")
    data = _b64decode(envelope[len(PASSWORD_PREFIX):])
    _min = 1 + DEFAULT_SALT_LENGTH + NONCE_SIZE + TAG_SIZE
    if len(data) < _min:
        raise DecryptionError(
            f"password envelope too short: {len(data)} bytes (minimum {_min})"
        )
    kdf_version = data[0]
    if kdf_version not in KDF_ITERATIONS:
        raise DecryptionError(f"unknown KDF version in envelope: {kdf_version}")
    salt = data[1:1 + DEFAULT_SALT_LENGTH]
    try:
        key = derive_key(password, salt, kdf_version)
    except KeyDerivationError as err:
        raise DecryptionError(f"cannot derive envelope key: {err}") from err
    blob = data[1 + DEFAULT_SALT_LENGTH:]
    return _to_text(open_sealed(blob, key, PASSWORD_TAG.encode("ascii")))


def reencrypt_value(envelope: str, old_key: Key, new_key: Key) -> str:
    """Open an envelope with old_key and seal it again under new_key."""
    return encrypt_value(decrypt_value(envelope, old_key), new_key)


# ---------------------------------------------------------------------------
# Object fields
# ---------------------------------------------------------------------------

def _field_values(obj: ProtectedObject, field_names: Iterable[str]) -> dict[str, Any]:
    if isinstance(field_names, str):
        raise TypeError("field_names must be a collection of names, not a single string")
    if isinstance(obj, BaseModel):
        return {
            name: getattr(obj, name) for name in field_names
            if name in type(obj).model_fields
        }
    if isinstance(obj, Mapping):
        return {name: obj[name] for name in field_names if name in obj}
    raise TypeError(
        f"Protected object must be a mapping or pydantic model, got {type(obj).__name__}"
    )


def _apply(obj: ProtectedObject, changes: dict[str, str]) -> ProtectedObject:
    if isinstance(obj, BaseModel):
        return obj.model_copy(update=changes)
    updated = dict(obj)
    updated.update(changes)
    return updated


def encrypt_fields(obj: ProtectedObject, field_names: Iterable[str], key: Key) -> ProtectedObject:
    """Return a copy of obj with the named text fields sealed under key.

    Absent and non-string fields are left untouched, envelopes that already
    open under key are not encrypted twice. All other fields keep their
    identity.
    """
    changes = {}
    for name, value in _field_values(obj, field_names).items():
        if not isinstance(value, str) or _opens_with(value, key):
            continue
        changes[name] = encrypt_value(value, key)
    return _apply(obj, changes)


def _opens_with(value: str, key: Key) -> bool:
    # text that merely looks like an envelope must still be sealed
    if not value.startswith(KEY_PREFIX):
        return False
    try:
        decrypt_value(value, key)
    except DecryptionError:
        return False
    return True


def decrypt_fields(
    obj: ProtectedObject,
    field_names: Iterable[str],
    key: Key,
    allow_legacy: bool = False,
) -> ProtectedObject:
    """Return a copy of obj with the named envelope fields opened.

    Each field is handled independently: a field that fails to decrypt
    keeps its original value and does not block its siblings. Without a
    usable key every field keeps its value.
    """
    values = _field_values(obj, field_names)
    if not isinstance(key, Key):
        logger.warning("No usable key to decrypt fields=%s", sorted(values))
        return _apply(obj, {})
    changes = {}
    for name, value in values.items():
        if not isinstance(value, str):
            continue
        if not is_protected(value) and not allow_legacy:
            continue
        try:
            changes[name] = decrypt_value(value, key, allow_legacy=allow_legacy)
        except DecryptionError as err:
            if is_protected(value):
                logger.warning(
                    "Could not decrypt field=%s with key=%s: %s",
                    name, key.fingerprint, err,
                )
    return _apply(obj, changes)
