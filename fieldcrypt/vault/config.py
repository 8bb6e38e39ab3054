"""
Vault Configuration — Validated settings for the key manager.

Reads overrides from environment variables:
    FIELDCRYPT_FAIL_MODE = open | closed
    FIELDCRYPT_KDF_VERSION = <integer>
    FIELDCRYPT_SALT_LENGTH = <integer, 16..32>
    FIELDCRYPT_LEGACY_ENVELOPES = true | false

Security Note:
    Never log key material. Only log key fingerprints and versions.
"""
import os
import logging
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from ..conf import SALT_KEY_NAME, SESSION_KEY_NAME
from .crypto import DEFAULT_KDF_VERSION, KDF_ITERATIONS, export_key, generate_key

logger = logging.getLogger("fieldcrypt.vault")

_TRUTHY = ("1", "true", "yes", "on")


class FailMode(str, Enum):
    """What a write does when no key is loaded.

    ``open`` stores the plaintext unchanged, ``closed`` refuses the write.
    """

    OPEN = "open"
    CLOSED = "closed"


def generate_session_key() -> str:
    """Generate a random 256-bit key and return it in exported (base64) form.

    This is a utility for operators and fixtures that need a session key
    outside of the sign-in flow.

    Returns:
        Base64-encoded 32-byte key string.
    """
    return export_key(generate_key())


class VaultConfig(BaseModel):
    """Validated key manager configuration."""

    fail_mode: FailMode = Field(default=FailMode.OPEN)
    kdf_version: int = Field(default=DEFAULT_KDF_VERSION)
    salt_length: int = Field(default=16, ge=16, le=32)
    session_key_name: str = Field(default=SESSION_KEY_NAME, min_length=1)
    salt_key_name: str = Field(default=SALT_KEY_NAME, min_length=1)
    allow_legacy_envelopes: bool = Field(default=False)

    @field_validator("kdf_version")
    @classmethod
    def validate_kdf_version(cls, v: int) -> int:
        """Validate the KDF version is known."""
        if v not in KDF_ITERATIONS:
            raise ValueError(
                f"Unsupported KDF version: {v} (available: {sorted(KDF_ITERATIONS)})"
            )
        return v

    @model_validator(mode="after")
    def validate_distinct_names(self) -> "VaultConfig":
        """Session key and salt must not share a storage entry."""
        if self.session_key_name == self.salt_key_name:
            raise ValueError(
                "session_key_name and salt_key_name must be different"
            )
        return self

    @property
    def fail_closed(self) -> bool:
        return self.fail_mode is FailMode.CLOSED

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        values = {}
        fail_mode = os.environ.get("FIELDCRYPT_FAIL_MODE")
        if fail_mode:
            values["fail_mode"] = fail_mode.lower()
        kdf_version = os.environ.get("FIELDCRYPT_KDF_VERSION")
        if kdf_version:
            values["kdf_version"] = int(kdf_version)
        salt_length = os.environ.get("FIELDCRYPT_SALT_LENGTH")
        if salt_length:
            values["salt_length"] = int(salt_length)
        legacy = os.environ.get("FIELDCRYPT_LEGACY_ENVELOPES")
        if legacy is not None:
            values["allow_legacy_envelopes"] = legacy.lower() in _TRUTHY
        config = cls(**values)
        logger.debug(
            "Vault config loaded: fail_mode=%s kdf_version=%d",
            config.fail_mode.value, config.kdf_version,
        )
        return config
