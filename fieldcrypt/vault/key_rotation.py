"""
Vault Key Rotation — Batch re-encryption of protected fields when the session key changes.

Walks an async record store page by page and re-seals every protected field
from the old key to the new key. The operation is idempotent: fields that
already open under the new key are skipped, so an interrupted rotation can
simply be run again.

Security Note:
    Plaintext exists in memory only during re-encryption of each field.
    Never log plaintext or ciphertext values.
"""
import logging
from collections.abc import Iterable
from typing import Any

from ..exceptions import DecryptionError
from .codec import KEY_PREFIX, decrypt_value, reencrypt_value
from .crypto import Key

logger = logging.getLogger("fieldcrypt.vault")


def _opens(value: str, key: Key) -> bool:
    try:
        decrypt_value(value, key)
    except DecryptionError:
        return False
    return True


async def rotate_fields(
    store: Any,
    field_names: Iterable[str],
    old_key: Key,
    new_key: Key,
    batch_size: int = 100,
    id_field: str = "id",
) -> dict:
    """Re-encrypt the named fields of every record from old_key to new_key.

    Args:
        store: Record store exposing ``async fetch_batch(offset, limit)``
            returning a list of mappings and ``async update(record_id, changes)``.
        field_names: Protected field names.
        old_key: Key the fields are currently sealed with.
        new_key: Key to seal them with.
        batch_size: Number of records fetched per page.
        id_field: Name of the record identifier field.

    Returns:
        Stats dict with keys: total, rotated, errors, skipped. Every record
        is counted once; a record with any failed field counts as an error
        even if its other fields were rotated.

    Raises:
        ValueError: If old_key and new_key are the same key or batch_size < 1.
    """
    if old_key == new_key:
        raise ValueError("old_key and new_key must differ")
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    field_names = list(field_names)
    stats = {"total": 0, "rotated": 0, "errors": 0, "skipped": 0}
    offset = 0

    logger.info(
        "Starting field rotation from key=%s to key=%s (fields=%s, batch_size=%d)",
        old_key.fingerprint, new_key.fingerprint, field_names, batch_size,
    )

    while True:
        rows = await store.fetch_batch(offset, batch_size)
        if not rows:
            break

        batch_num = (offset // batch_size) + 1
        logger.info("Processing batch %d (%d rows)", batch_num, len(rows))

        for row in rows:
            stats["total"] += 1
            record_id = row.get(id_field)
            changes = {}
            failed = False
            for name in field_names:
                value = row.get(name)
                if not isinstance(value, str) or not value.startswith(KEY_PREFIX):
                    continue
                if _opens(value, new_key):
                    continue
                try:
                    changes[name] = reencrypt_value(value, old_key, new_key)
                except DecryptionError as err:
                    logger.error(
                        "Error rotating record id=%s field=%s: %s",
                        record_id, name, err,
                    )
                    failed = True
            if changes:
                await store.update(record_id, changes)
            # each record lands in exactly one bucket, errors first
            if failed:
                stats["errors"] += 1
            elif changes:
                stats["rotated"] += 1
            else:
                stats["skipped"] += 1

        if len(rows) < batch_size:
            break
        offset += len(rows)

    logger.info("Field rotation complete: %s", stats)
    return stats
