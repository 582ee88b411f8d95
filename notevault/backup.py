"""
Portable encrypted backups.

A backup is a UTF-8 JSON document carrying the vault salt and every
encrypted record, exactly as stored:

    {
      "version": 1,
      "timestamp": <milliseconds since epoch>,
      "salt": "<32 hex chars>",
      "notes": [
        {"id": ..., "encryptedData": <base64>, "iv": <hex>, "timestamp": <ms>},
        ...
      ]
    }

Exporting never decrypts anything. Importing only parses and validates;
applying a backup to a live vault is NoteRecordStore.merge_backup().
"""

import json
import logging
from dataclasses import dataclass, field
from typing import List

from notevault import crypto
from notevault.errors import DecryptionFailed, IncorrectPassword, InvalidBackupFormat
from notevault.models import EncryptedRecord, now_ms

BACKUP_VERSION = 1

logger = logging.getLogger(__name__)


@dataclass
class Backup:
    version: int
    timestamp: int
    salt: bytes
    records: List[EncryptedRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'version': self.version,
            'timestamp': self.timestamp,
            'salt': crypto.salt_to_hex(self.salt),
            'notes': [record.to_dict() for record in self.records],
        }


def export_backup(salt: bytes, records, timestamp: int = None) -> str:
    """
    Serialize the salt and encrypted records into a backup document.

    Args:
        salt: Vault salt (raw bytes)
        records: Iterable of EncryptedRecord, order preserved
        timestamp: Export time in ms (defaults to now)

    Returns:
        Backup document as JSON text
    """
    backup = Backup(
        version=BACKUP_VERSION,
        timestamp=now_ms() if timestamp is None else timestamp,
        salt=salt,
        records=list(records),
    )
    return json.dumps(backup.to_dict(), indent=2)


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


def import_backup(document) -> Backup:
    """
    Parse and validate a backup document.

    Args:
        document: JSON text (str or UTF-8 bytes)

    Raises:
        InvalidBackupFormat: If the document is not valid JSON, misses
            version/notes/salt, has an unsupported version, or contains a
            malformed record
    """
    try:
        if isinstance(document, bytes):
            document = document.decode('utf-8')
        data = json.loads(document)
    except (UnicodeDecodeError, ValueError, TypeError) as e:
        raise InvalidBackupFormat(f"Failed to parse backup file: {e}")

    if not isinstance(data, dict):
        raise InvalidBackupFormat("Backup must be a JSON object")

    version = data.get('version')
    if not _is_int(version) or version < 1:
        raise InvalidBackupFormat("Invalid backup format: missing or bad version")
    if version > BACKUP_VERSION:
        raise InvalidBackupFormat(f"Unsupported backup version {version}")

    notes = data.get('notes')
    if not isinstance(notes, list):
        raise InvalidBackupFormat("Invalid backup format: missing notes")

    try:
        salt = crypto.salt_from_hex(data.get('salt'))
    except (ValueError, TypeError):
        raise InvalidBackupFormat("Invalid backup format: missing or bad salt")

    timestamp = data.get('timestamp', 0)
    if not _is_int(timestamp):
        raise InvalidBackupFormat("Invalid backup format: bad timestamp")

    records = []
    for index, item in enumerate(notes):
        try:
            records.append(EncryptedRecord.from_dict(item))
        except ValueError as e:
            raise InvalidBackupFormat(f"Invalid record at position {index}: {e}")

    return Backup(version=version, timestamp=timestamp, salt=salt, records=records)


def decrypt_backup(backup: Backup, password: str, iterations: int = None):
    """
    Open a backup with nothing but its password.

    The key is re-derived from the salt embedded in the backup, so this
    works without any live vault. Records that fail to decrypt are skipped
    and logged.

    Returns:
        List of Note

    Raises:
        IncorrectPassword: If the backup holds records and none decrypt
    """
    key = crypto.derive_key(password, backup.salt, iterations)

    notes = []
    for record in backup.records:
        try:
            notes.append(crypto.decrypt_record(key, record))
        except DecryptionFailed as e:
            logger.warning("Skipping backup record %s: %s", record.id, e)

    if backup.records and not notes:
        raise IncorrectPassword("Incorrect password for this backup")
    return notes
