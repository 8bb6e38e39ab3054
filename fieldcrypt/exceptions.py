"""
Exceptions raised by FieldCrypt.

Only KeyDerivationError is expected to reach UI-level error handling;
DecryptionError is absorbed by the best-effort helpers.
"""


class FieldCryptError(Exception):
    """Base class for every FieldCrypt error."""


class KeyDerivationError(FieldCryptError):
    """A key could not be derived, generated or imported."""


class DecryptionError(FieldCryptError):
    """An envelope is malformed, tampered or was sealed with another key."""


class EncryptionError(FieldCryptError):
    """A value could not be sealed."""


class KeyUnavailableError(FieldCryptError):
    """Write refused because no key is loaded and fail-closed mode is active."""
