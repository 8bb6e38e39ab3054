"""Field Vault — Session-keyed encryption of selected record fields.

Security Note (Threat Model):
    The session key lives in process memory and, exported, in session-scoped
    storage for the lifetime of the session. Anyone able to read either can
    decrypt every protected field of that profile. Row identifiers,
    timestamps and relational structure are stored in the clear.
"""

from .crypto import (
    Key,
    generate_key,
    generate_salt,
    derive_key,
    derive_partition_key,
    export_key,
    import_key,
)
from .codec import (
    is_protected,
    encrypt_value,
    decrypt_value,
    encrypt_with_password,
    decrypt_with_password,
    reencrypt_value,
    encrypt_fields,
    decrypt_fields,
)
from .config import VaultConfig, FailMode, generate_session_key
from .key_manager import KeyManager, KeyState, AuthEvent
from .key_rotation import rotate_fields

__all__ = [
    "Key",
    "generate_key",
    "generate_salt",
    "derive_key",
    "derive_partition_key",
    "export_key",
    "import_key",
    "is_protected",
    "encrypt_value",
    "decrypt_value",
    "encrypt_with_password",
    "decrypt_with_password",
    "reencrypt_value",
    "encrypt_fields",
    "decrypt_fields",
    "VaultConfig",
    "FailMode",
    "generate_session_key",
    "KeyManager",
    "KeyState",
    "AuthEvent",
    "rotate_fields",
]
