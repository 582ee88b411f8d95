"""
Key-value persistence backends for NoteVault.

The core only needs five operations over two namespaces:

    put(namespace, key, value)
    get(namespace, key) -> value or None
    get_all(namespace) -> list of values
    delete(namespace, key)
    clear_all()

NOTES holds EncryptedRecord dictionaries keyed by note id. SETTINGS holds
strings keyed by setting name (masterSalt, passwordCheck).
"""

import copy
import logging
import threading

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from notevault.errors import StorageUnavailable
from notevault.models import db, RecordEntry, Setting

NOTES = 'notes'
SETTINGS = 'settings'
NAMESPACES = (NOTES, SETTINGS)

logger = logging.getLogger(__name__)


def _check_namespace(namespace):
    if namespace not in NAMESPACES:
        raise ValueError(f"Unknown namespace: {namespace!r}")


class KeyValueStore:
    """Interface every persistence backend implements."""

    def put(self, namespace, key, value):
        raise NotImplementedError

    def get(self, namespace, key):
        raise NotImplementedError

    def get_all(self, namespace):
        raise NotImplementedError

    def delete(self, namespace, key):
        raise NotImplementedError

    def clear_all(self):
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    """
    Dictionary-backed store.

    Values are deep-copied on the way in and out so callers can never
    mutate stored state by accident.
    """

    def __init__(self):
        self._data = {ns: {} for ns in NAMESPACES}
        self._lock = threading.Lock()

    def put(self, namespace, key, value):
        _check_namespace(namespace)
        with self._lock:
            self._data[namespace][key] = copy.deepcopy(value)

    def get(self, namespace, key):
        _check_namespace(namespace)
        with self._lock:
            return copy.deepcopy(self._data[namespace].get(key))

    def get_all(self, namespace):
        _check_namespace(namespace)
        with self._lock:
            return [copy.deepcopy(v) for v in self._data[namespace].values()]

    def delete(self, namespace, key):
        _check_namespace(namespace)
        with self._lock:
            self._data[namespace].pop(key, None)

    def clear_all(self):
        with self._lock:
            for namespace in NAMESPACES:
                self._data[namespace].clear()


class SQLAlchemyStore(KeyValueStore):
    """
    Store backed by the Flask-SQLAlchemy session.

    Must be used inside an application context. Database errors are rolled
    back and surfaced as StorageUnavailable.
    """

    def _run(self, operation, commit=False):
        try:
            result = operation()
            if commit:
                db.session.commit()
            return result
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Storage operation failed: %s", e)
            raise StorageUnavailable(f"Storage backend error: {e}")

    def put(self, namespace, key, value):
        _check_namespace(namespace)

        def operation():
            if namespace == NOTES:
                entry = db.session.get(RecordEntry, key)
                if entry is None:
                    entry = RecordEntry(id=key)
                    db.session.add(entry)
                entry.encrypted_data = value['encryptedData']
                entry.iv = value['iv']
                entry.timestamp = value['timestamp']
            else:
                setting = db.session.get(Setting, key)
                if setting is None:
                    setting = Setting(key=key)
                    db.session.add(setting)
                setting.value = value

        self._run(operation, commit=True)

    def get(self, namespace, key):
        _check_namespace(namespace)

        def operation():
            if namespace == NOTES:
                entry = db.session.get(RecordEntry, key)
                return entry.to_record().to_dict() if entry else None
            setting = db.session.get(Setting, key)
            return setting.value if setting else None

        return self._run(operation)

    def get_all(self, namespace):
        _check_namespace(namespace)

        def operation():
            if namespace == NOTES:
                entries = db.session.execute(
                    select(RecordEntry).order_by(RecordEntry.timestamp)
                ).scalars()
                return [entry.to_record().to_dict() for entry in entries]
            settings = db.session.execute(select(Setting)).scalars()
            return [setting.value for setting in settings]

        return self._run(operation)

    def delete(self, namespace, key):
        _check_namespace(namespace)
        model = RecordEntry if namespace == NOTES else Setting

        def operation():
            row = db.session.get(model, key)
            if row is not None:
                db.session.delete(row)

        self._run(operation, commit=True)

    def clear_all(self):
        def operation():
            db.session.execute(delete(RecordEntry))
            db.session.execute(delete(Setting))

        self._run(operation, commit=True)
