"""
Note-level persistence on top of the key-value store.

NoteRecordStore is the only place where Notes meet storage:

    save(note)    -> encrypt under the session key, put(notes, id, record)
    load_all()    -> get_all(notes), decrypt each, skip the unreadable ones
    delete(id)    -> delete(notes, id)

Saves of the same note id are serialized and applied last-writer-wins by
`modified`; saves of different notes do not wait for each other.

Decrypted notes are cached in memory for the unlocked session only; the
cache is dropped whenever the session locks.
"""

import logging
import threading

from notevault import crypto
from notevault.backup import export_backup
from notevault.errors import DecryptionFailed, IncorrectPassword, VaultStateError
from notevault.models import EncryptedRecord, Note
from notevault.storage import NOTES

logger = logging.getLogger(__name__)


class NoteRecordStore:
    """Maps Note operations to encrypted-record persistence."""

    def __init__(self, kv, session):
        self._kv = kv
        self._session = session
        self._cache = {}
        self._cache_lock = threading.Lock()
        self._id_locks = {}
        self._id_locks_guard = threading.Lock()
        session.add_lock_listener(self.clear_cache)

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    def save(self, note: Note) -> bool:
        """
        Encrypt and persist a note.

        Returns:
            False if a newer version of the note is already stored (the
            stale write is dropped), True otherwise

        Raises:
            EncryptionFailed: If the vault is locked
            StorageUnavailable: If the backend fails
        """
        return self._write(note) is not None

    def _write(self, note: Note):
        """
        save() that reports what happened: 'added', 'updated', or None
        for a dropped stale write. The outcome is decided under the
        note's lock.
        """
        if note.modified < note.created:
            raise ValueError("Note modified time precedes its creation time")

        key = self._session.key
        with self._lock_for(note.id):
            existing = self._kv.get(NOTES, note.id)
            if existing is not None and existing.get('timestamp', 0) > note.modified:
                logger.info("Dropping stale save of note %s", note.id)
                return None

            record = crypto.encrypt_record(key, note)
            self._kv.put(NOTES, note.id, record.to_dict())
            self._remember(note)

        return 'added' if existing is None else 'updated'

    def load_all_with_errors(self):
        """
        Decrypt every stored record.

        Returns:
            Tuple of (notes, skipped_ids). A record that fails to parse or
            decrypt is logged and reported in skipped_ids; it never aborts
            the load.

        Raises:
            EncryptionFailed: If the vault is locked
        """
        key = self._session.key
        notes, skipped = [], []

        for raw in self._kv.get_all(NOTES):
            record_id = raw.get('id', '?') if isinstance(raw, dict) else '?'
            try:
                record = EncryptedRecord.from_dict(raw)
                notes.append(crypto.decrypt_record(key, record))
            except ValueError as e:
                # DecryptionFailed is a ValueError as well
                logger.warning("Failed to decrypt note %s: %s", record_id, e)
                skipped.append(record_id)

        with self._cache_lock:
            self._cache = {note.id: note for note in notes}
        if not self._session.is_unlocked:
            self.clear_cache()
        return notes, skipped

    def load_all(self):
        """Decrypt every readable record; see load_all_with_errors()."""
        notes, _ = self.load_all_with_errors()
        return notes

    def get(self, note_id):
        """
        Return one note, or None if no record exists for note_id.

        Raises:
            EncryptionFailed: If the vault is locked
            DecryptionFailed: If the stored record cannot be decrypted
        """
        key = self._session.key
        with self._cache_lock:
            cached = self._cache.get(note_id)
        if cached is not None:
            return cached

        raw = self._kv.get(NOTES, note_id)
        if raw is None:
            return None
        try:
            record = EncryptedRecord.from_dict(raw)
        except ValueError as e:
            raise DecryptionFailed(f"Stored record {note_id} is malformed: {e}")

        note = crypto.decrypt_record(key, record)
        self._remember(note)
        return note

    def delete(self, note_id) -> bool:
        """
        Delete a note's record.

        Returns:
            True if a record existed
        """
        # The id's lock stays registered; a save may already be waiting on it
        with self._lock_for(note_id):
            existed = self._kv.get(NOTES, note_id) is not None
            self._kv.delete(NOTES, note_id)
            with self._cache_lock:
                self._cache.pop(note_id, None)
        return existed

    # ------------------------------------------------------------------
    # Records and backups
    # ------------------------------------------------------------------

    def records(self):
        """Stored records as-is, without decrypting. Malformed rows are skipped."""
        records = []
        for raw in self._kv.get_all(NOTES):
            try:
                records.append(EncryptedRecord.from_dict(raw))
            except ValueError as e:
                logger.warning("Skipping malformed stored record: %s", e)
        return records

    def export_backup(self) -> str:
        """
        Build a backup document of every stored record.

        Needs no session key: only the stored salt and ciphertext go in.
        """
        return export_backup(self._session.load_salt(), self.records())

    def merge_backup(self, backup, password=None) -> dict:
        """
        Apply a parsed backup to the live vault.

        Records are decrypted first (with the live key when the backup came
        from this vault, or with a key derived from `password` and the
        backup's salt otherwise) and re-saved under the live key. Per note
        id the newer `modified` wins; undecryptable records are skipped.

        Returns:
            Dictionary of counts: added, updated, skipped

        Raises:
            EncryptionFailed: If the vault is locked
            VaultStateError: If the backup is from another vault and no
                password was given
            IncorrectPassword: If the backup holds records and none of them
                decrypt
        """
        live_key = self._session.key
        if backup.salt == self._session.salt:
            backup_key = live_key
        elif password is None:
            raise VaultStateError(
                "Backup was made by a different vault - its password is required"
            )
        else:
            backup_key = crypto.derive_key(password, backup.salt, self._session.iterations)

        summary = {'added': 0, 'updated': 0, 'skipped': 0}
        decrypted = 0
        for record in backup.records:
            try:
                note = crypto.decrypt_record(backup_key, record)
            except DecryptionFailed as e:
                logger.warning("Skipping backup record %s: %s", record.id, e)
                summary['skipped'] += 1
                continue
            decrypted += 1

            outcome = self._write(note)
            summary[outcome or 'skipped'] += 1

        if backup.records and not decrypted:
            raise IncorrectPassword("No record in the backup could be decrypted")

        logger.info(
            "Merged backup: %(added)d added, %(updated)d updated, %(skipped)d skipped",
            summary,
        )
        return summary

    # ------------------------------------------------------------------
    # Cache and locking
    # ------------------------------------------------------------------

    def clear_cache(self):
        with self._cache_lock:
            self._cache = {}

    def _remember(self, note):
        if not self._session.is_unlocked:
            return
        with self._cache_lock:
            self._cache[note.id] = note

    def _lock_for(self, note_id):
        with self._id_locks_guard:
            lock = self._id_locks.get(note_id)
            if lock is None:
                lock = self._id_locks[note_id] = threading.Lock()
            return lock
