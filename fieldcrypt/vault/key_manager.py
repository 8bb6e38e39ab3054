"""
KeyManager — Session key lifecycle and best-effort field encryption.

Provides the public API used by the host application:
- ``initialize_from_password(password)`` — derive the session key from password + salt
- ``initialize_from_random()`` — reuse or create a random session key
- ``get_current_key()`` — memory → session storage → None
- ``clear_key()`` — forget the key on sign-out
- ``derive_for_partition(label)`` — per room/topic key
- ``encrypt_if_available`` / ``decrypt_if_available`` — never raise on decrypt

Security Note:
    Never log plaintext or ciphertext values. Only log key fingerprints,
    partition labels and field names.
"""
import asyncio
import logging
from collections.abc import Iterable
from enum import Enum
from typing import Any, Optional

from ..exceptions import (
    DecryptionError,
    EncryptionError,
    KeyDerivationError,
    KeyUnavailableError,
)
from ..storage import KeyValueStore
from .codec import (
    ProtectedObject,
    decrypt_fields,
    decrypt_value,
    encrypt_fields,
    encrypt_value,
    is_protected,
)
from .config import VaultConfig
from .crypto import (
    Key,
    decode_salt,
    derive_key,
    derive_partition_key,
    encode_salt,
    export_key,
    generate_key,
    generate_salt,
    import_key,
)

logger = logging.getLogger("fieldcrypt.vault")


class KeyState(str, Enum):
    NO_KEY = "no_key"
    KEYED = "keyed"


class AuthEvent(str, Enum):
    """Auth state changes the manager reacts to."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    INITIAL_SESSION = "INITIAL_SESSION"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


class KeyManager:
    """Session key holder, one instance per signed-in session.

    The key lives in memory and, exported, in the session-scoped store so a
    reload within the same session can recover it. The salt lives in the
    persistent store and must never be replaced once data was written.

    Calls that mutate the key (``initialize_*``, ``clear_key``) must be
    serialized by the caller.
    """

    def __init__(
        self,
        session_store: KeyValueStore,
        persistent_store: KeyValueStore,
        config: Optional[VaultConfig] = None,
    ):
        self._session = session_store
        self._persistent = persistent_store
        self._config = config or VaultConfig()
        self._key: Optional[Key] = None

    def __repr__(self) -> str:
        return f"<KeyManager state={self.state.value}>"

    @property
    def config(self) -> VaultConfig:
        return self._config

    @property
    def state(self) -> KeyState:
        """State of the in-memory key; a key only in session storage counts as NO_KEY."""
        return KeyState.KEYED if self._key is not None else KeyState.NO_KEY

    # ------------------------------------------------------------------
    # Salt helpers
    # ------------------------------------------------------------------

    async def _ensure_salt(self) -> bytes:
        """Return the persisted salt, creating it on first use.

        Raises:
            KeyDerivationError: If a stored salt exists but cannot be decoded,
                or the persistent store cannot be read or written.
        """
        try:
            stored = await self._persistent.get(self._config.salt_key_name)
        except Exception as err:
            raise KeyDerivationError(f"Cannot read KDF salt: {err}") from err
        if stored is not None:
            return decode_salt(stored)
        salt = generate_salt(self._config.salt_length)
        try:
            await self._persistent.set(self._config.salt_key_name, encode_salt(salt))
        except Exception as err:
            raise KeyDerivationError(f"Cannot persist KDF salt: {err}") from err
        logger.info("Created new KDF salt (%d bytes)", len(salt))
        return salt

    async def _store_key(self, key: Key) -> None:
        await self._session.set(self._config.session_key_name, export_key(key))
        self._key = key

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize_from_password(self, password: str) -> Key:
        """Derive the session key from password and the persisted salt.

        Raises:
            KeyDerivationError: If the salt is unusable or derivation fails.
        """
        if not password:
            raise KeyDerivationError("Password must not be empty")
        salt = await self._ensure_salt()
        # PBKDF2 is CPU bound; keep the event loop responsive.
        key = await asyncio.to_thread(
            derive_key, password, salt, self._config.kdf_version,
        )
        await self._store_key(key)
        logger.info("Session key derived from password: key=%s", key.fingerprint)
        return key

    async def initialize_from_random(self) -> Key:
        """Reuse the session key stored for this session, or create a random one.

        Raises:
            KeyDerivationError: If a new key cannot be generated.
        """
        key = await self.get_current_key()
        if key is not None:
            logger.debug("Reusing session key=%s", key.fingerprint)
            return key
        try:
            key = generate_key()
        except OSError as err:
            raise KeyDerivationError(f"Random key generation failed: {err}") from err
        await self._store_key(key)
        logger.info("Generated random session key=%s", key.fingerprint)
        return key

    async def initialize_from_key(self, key: Key) -> Key:
        """Adopt a key obtained by the host application."""
        if not isinstance(key, Key):
            raise KeyDerivationError("initialize_from_key requires a Key")
        await self._store_key(key)
        logger.info("Session key installed: key=%s", key.fingerprint)
        return key

    async def get_current_key(self) -> Optional[Key]:
        """Return the current key, loading it from session storage if needed.

        Returns None when no key exists; that is a normal signed-out state.
        """
        if self._key is not None:
            return self._key
        data = await self._session.get(self._config.session_key_name)
        if data is None:
            return None
        try:
            self._key = import_key(data)
        except KeyDerivationError as err:
            logger.error("Discarding unreadable session key entry: %s", err)
            await self._session.remove(self._config.session_key_name)
            return None
        logger.debug("Session key restored from storage: key=%s", self._key.fingerprint)
        return self._key

    async def has_key(self) -> bool:
        return await self.get_current_key() is not None

    async def clear_key(self) -> None:
        """Forget the key in memory and in session storage."""
        fingerprint = self._key.fingerprint if self._key is not None else None
        self._key = None
        await self._session.remove(self._config.session_key_name)
        logger.info("Session key cleared (key=%s)", fingerprint)

    async def handle_auth_event(self, event: Any) -> None:
        """React to an auth state change coming from the host application.

        Sign-in (and an already signed-in session on startup) gets a session
        key; sign-out clears it. Other events are ignored.
        """
        try:
            event = AuthEvent(getattr(event, "value", event))
        except ValueError:
            logger.debug("Ignoring unknown auth event %r", event)
            return
        if event is AuthEvent.SIGNED_OUT:
            await self.clear_key()
        elif event in (AuthEvent.SIGNED_IN, AuthEvent.INITIAL_SESSION):
            await self.initialize_from_random()

    async def derive_for_partition(self, label: str) -> Optional[Key]:
        """Return the key for a partition (room, topic...), or None without a session key."""
        key = await self.get_current_key()
        if key is None:
            return None
        return derive_partition_key(key, label)

    async def _resolve_key(self, partition: Optional[str]) -> Optional[Key]:
        if partition is None:
            return await self.get_current_key()
        return await self.derive_for_partition(partition)

    async def _resolve_read_key(self, partition: Optional[str]) -> Optional[Key]:
        # reads degrade to "no key" instead of raising
        try:
            return await self._resolve_key(partition)
        except KeyDerivationError as err:
            logger.warning(
                "Cannot resolve key for partition=%r, leaving values unchanged: %s",
                partition, err,
            )
            return None

    # ------------------------------------------------------------------
    # Best-effort helpers
    # ------------------------------------------------------------------

    def _missing_key(self, what: str) -> None:
        if self._config.fail_closed:
            raise KeyUnavailableError(f"Refusing to store {what} without an encryption key")
        logger.warning("No encryption key available, storing %s as plaintext", what)

    async def encrypt_if_available(self, text: str, partition: Optional[str] = None) -> str:
        """Return an envelope for text, or text itself when no key is loaded (fail-open).

        Raises:
            KeyUnavailableError: No key and fail-closed mode.
        """
        if not isinstance(text, str):
            return text
        key = await self._resolve_key(partition)
        if key is None:
            self._missing_key("value")
            return text
        try:
            return encrypt_value(text, key)
        except EncryptionError as err:
            if self._config.fail_closed:
                raise
            logger.error("Encryption failed with key=%s, storing plaintext: %s", key.fingerprint, err)
            return text

    async def decrypt_if_available(self, value: str, partition: Optional[str] = None) -> str:
        """Return the plaintext of value, or value unchanged when it cannot be opened."""
        if not isinstance(value, str):
            return value
        legacy = self._config.allow_legacy_envelopes
        if not legacy and not is_protected(value):
            return value
        key = await self._resolve_read_key(partition)
        if key is None:
            return value
        try:
            return decrypt_value(value, key, allow_legacy=legacy)
        except DecryptionError as err:
            if is_protected(value):
                logger.warning(
                    "Failed to decrypt value with key=%s (partition=%s), returning original: %s",
                    key.fingerprint, partition, err,
                )
            return value

    async def encrypt_fields(
        self,
        obj: ProtectedObject,
        field_names: Iterable[str],
        partition: Optional[str] = None,
    ) -> ProtectedObject:
        """Encrypt the named fields of obj with the session (or partition) key."""
        key = await self._resolve_key(partition)
        if key is None:
            self._missing_key("record fields")
            return obj
        return encrypt_fields(obj, field_names, key)

    async def decrypt_fields(
        self,
        obj: ProtectedObject,
        field_names: Iterable[str],
        partition: Optional[str] = None,
    ) -> ProtectedObject:
        """Decrypt the named fields of obj; unreadable fields keep their value."""
        key = await self._resolve_read_key(partition)
        if key is None:
            return obj
        return decrypt_fields(
            obj, field_names, key, allow_legacy=self._config.allow_legacy_envelopes,
        )

    # ------------------------------------------------------------------
    # Session scope
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "KeyManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.clear_key()

    @classmethod
    async def load_for_session(
        cls,
        session_store: KeyValueStore,
        persistent_store: KeyValueStore,
        password: Optional[str] = None,
        config: Optional[VaultConfig] = None,
    ) -> "KeyManager":
        """Build a manager and initialize its key in one step.

        This is the primary constructor used during the sign-in flow.

        Args:
            session_store: Session-scoped store for the exported key.
            persistent_store: Long-lived store for the salt.
            password: Derive the key from this password; a random key
                is used when omitted.
            config: Optional VaultConfig; defaults are used otherwise.

        Returns:
            KeyManager in the KEYED state.
        """
        manager = cls(session_store, persistent_store, config=config)
        if password is not None:
            await manager.initialize_from_password(password)
        else:
            await manager.initialize_from_random()
        return manager
