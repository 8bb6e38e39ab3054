"""Default logical names used at the storage boundary."""
import os

# session-scoped entry holding the exported key
SESSION_KEY_NAME = os.environ.get("FIELDCRYPT_SESSION_KEY_NAME", "e2e_encryption_key")
# long-lived entry holding the KDF salt
SALT_KEY_NAME = os.environ.get("FIELDCRYPT_SALT_KEY_NAME", "e2e_salt")
# key prefix for Redis-backed session entries
REDIS_PREFIX = os.environ.get("FIELDCRYPT_REDIS_PREFIX", "fieldcrypt")
