"""
Session management for NoteVault.

A SessionManager owns the session key for as long as the vault is
unlocked. One instance exists per application (see create_app); tests
build their own isolated instances.

State machine:

    LOCKED --first_time_setup()--> UNLOCKED   (only when no salt exists)
    LOCKED --unlock()--> UNLOCKING --> UNLOCKED | LOCKED (IncorrectPassword)
    UNLOCKED --lock()--> LOCKED               (idempotent)

Password verification never uses a stored hash of the password. Unlock
checks the candidate key by decrypting a known-plaintext canary written
at setup; vaults created without a canary fall back to trial-decrypting
the first stored record.

Key material is kept in a bytearray and overwritten with zeros on lock.
Python cannot guarantee that no other copy survives (the cipher library
and the `key` snapshots hand out immutable bytes), so zeroing shortens
the exposure window rather than closing it.
"""

import enum
import logging
import threading
import time

from notevault import crypto
from notevault.errors import (
    DecryptionFailed, EncryptionFailed, IncorrectPassword,
    StorageUnavailable, VaultStateError,
)
from notevault.models import EncryptedRecord
from notevault.storage import NOTES, SETTINGS

SALT_KEY = 'masterSalt'
PASSWORD_CHECK_KEY = 'passwordCheck'
DEFAULT_AUTO_LOCK_SECONDS = 15 * 60

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    LOCKED = 'locked'
    UNLOCKING = 'unlocking'
    UNLOCKED = 'unlocked'


class SessionManager:
    """Holds the session key between unlock and lock."""

    def __init__(self, store, iterations=None,
                 auto_lock_seconds=DEFAULT_AUTO_LOCK_SECONDS, clock=time.monotonic):
        self._store = store
        self._iterations = iterations
        self.auto_lock_seconds = auto_lock_seconds
        self._clock = clock

        self._key = None  # bytearray while unlocked
        self._salt = None
        self._state = SessionState.LOCKED
        self._last_activity = None
        self._lock_listeners = []
        self._auto_lock_listeners = []
        self._idle_timer = None

        # Serializes whole derive-and-verify sequences
        self._unlock_lock = threading.Lock()
        # Guards key/state mutation
        self._state_lock = threading.RLock()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def store(self):
        return self._store

    @property
    def iterations(self):
        return self._iterations

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_unlocked(self) -> bool:
        return self._state is SessionState.UNLOCKED

    @property
    def key(self) -> bytes:
        """
        Snapshot of the session key.

        Raises:
            EncryptionFailed: If the vault is locked
        """
        with self._state_lock:
            if self._key is None:
                raise EncryptionFailed("Vault is locked - unlock it first")
            return bytes(self._key)

    @property
    def salt(self) -> bytes:
        """Salt of the unlocked vault."""
        with self._state_lock:
            if self._salt is None:
                raise EncryptionFailed("Vault is locked - unlock it first")
            return self._salt

    def has_vault(self) -> bool:
        """A stored salt means first-time setup has already happened."""
        return self._store.get(SETTINGS, SALT_KEY) is not None

    def load_salt(self) -> bytes:
        """
        Read the persisted salt.

        Raises:
            VaultStateError: If no vault exists yet
            StorageUnavailable: If the stored salt is corrupted
        """
        value = self._store.get(SETTINGS, SALT_KEY)
        if value is None:
            raise VaultStateError("No vault exists yet - run first-time setup")
        try:
            return crypto.salt_from_hex(value)
        except (ValueError, TypeError) as e:
            raise StorageUnavailable(f"Stored salt is corrupted: {e}")

    def add_lock_listener(self, callback):
        """Register a callable run after every lock (clears decrypted state)."""
        self._lock_listeners.append(callback)

    def add_auto_lock_listener(self, callback):
        """Register a callable run after an inactivity lock."""
        self._auto_lock_listeners.append(callback)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def first_time_setup(self, password: str):
        """
        Create the vault: new salt, new key, password canary.

        Raises:
            VaultStateError: If a vault already exists
            StorageUnavailable: If the salt cannot be persisted
        """
        with self._unlock_lock:
            if self.has_vault():
                raise VaultStateError("A vault already exists - unlock it instead")

            salt = crypto.generate_salt()
            key = crypto.derive_key(password, salt, self._iterations)

            self._store.put(SETTINGS, SALT_KEY, crypto.salt_to_hex(salt))
            self._store.put(SETTINGS, PASSWORD_CHECK_KEY, crypto.make_password_check(key))

            self._set_key(key, salt)
            logger.info("Vault created")

    def unlock(self, password: str):
        """
        Derive the key from `password` and verify it before accepting it.

        Raises:
            VaultStateError: If no vault exists yet
            IncorrectPassword: If verification fails; the session keeps its
                previous state
        """
        with self._unlock_lock:
            salt = self.load_salt()

            with self._state_lock:
                previous = self._state
                if previous is SessionState.LOCKED:
                    self._state = SessionState.UNLOCKING

            try:
                candidate = crypto.derive_key(password, salt, self._iterations)
                verified = self._verify(candidate)
            except Exception:
                self._restore_state(previous)
                raise

            if not verified:
                self._restore_state(previous)
                logger.warning("Unlock rejected: incorrect password")
                raise IncorrectPassword("Incorrect password")

            self._set_key(candidate, salt)
            logger.info("Vault unlocked")

    def verify_password(self, password: str) -> bool:
        """
        Check a password against the vault without changing session state.

        Raises:
            VaultStateError: If no vault exists yet
        """
        with self._unlock_lock:
            salt = self.load_salt()
            candidate = crypto.derive_key(password, salt, self._iterations)
            return self._verify(candidate)

    def lock(self) -> bool:
        """
        Zero and discard the session key.

        Returns:
            True if the vault was unlocked, False if it already was locked
        """
        with self._state_lock:
            self._cancel_idle_timer()
            if self._key is None:
                return False
            for i in range(len(self._key)):
                self._key[i] = 0
            self._key = None
            self._salt = None
            self._last_activity = None
            self._state = SessionState.LOCKED

        logger.info("Vault locked")
        for callback in list(self._lock_listeners):
            callback()
        return True

    def wipe(self):
        """Erase every record and setting, then lock."""
        self._store.clear_all()
        self.lock()
        logger.warning("Vault wiped")

    # ------------------------------------------------------------------
    # Inactivity auto-lock
    # ------------------------------------------------------------------

    def touch(self):
        """Record user activity and restart the idle timer."""
        with self._state_lock:
            if self._key is None:
                return
            self._last_activity = self._clock()
            self._arm_idle_timer(self.auto_lock_seconds)

    def idle_seconds(self):
        last = self._last_activity
        if last is None:
            return None
        return self._clock() - last

    def lock_if_idle(self) -> bool:
        """
        Lock when no activity was seen within auto_lock_seconds.

        Runs from the idle timer and may also be called directly. Auto-lock
        listeners are notified only when this call did the locking.
        """
        if not self.auto_lock_seconds:
            return False
        idle = self.idle_seconds()
        if idle is None or idle < self.auto_lock_seconds:
            return False

        logger.info("Auto-locking after %.0f idle seconds", idle)
        if not self.lock():
            return False
        for callback in list(self._auto_lock_listeners):
            callback()
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_key(self, key: bytes, salt: bytes):
        with self._state_lock:
            if self._key is not None:
                for i in range(len(self._key)):
                    self._key[i] = 0
            self._key = bytearray(key)
            self._salt = salt
            self._state = SessionState.UNLOCKED
            self._last_activity = self._clock()
            self._arm_idle_timer(self.auto_lock_seconds)

    def _arm_idle_timer(self, delay):
        # Caller holds _state_lock
        self._cancel_idle_timer()
        if not self.auto_lock_seconds or self._key is None:
            return
        timer = threading.Timer(delay, self._idle_timer_fired)
        timer.daemon = True
        self._idle_timer = timer
        timer.start()

    def _cancel_idle_timer(self):
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None

    def _idle_timer_fired(self):
        if self.lock_if_idle():
            return
        # The clock may disagree with the timer; wait out the rest
        with self._state_lock:
            idle = self.idle_seconds()
            if idle is not None and self.auto_lock_seconds:
                self._arm_idle_timer(max(self.auto_lock_seconds - idle, 1))

    def _restore_state(self, previous):
        with self._state_lock:
            if self._state is SessionState.UNLOCKING:
                self._state = previous

    def _verify(self, candidate: bytes) -> bool:
        check = self._store.get(SETTINGS, PASSWORD_CHECK_KEY)
        if check is not None:
            try:
                return crypto.verify_password_check(candidate, check)
            except DecryptionFailed as e:
                # Rebuilt below from a record once the key is confirmed
                logger.error("Ignoring unreadable password check: %s", e)

        # Vaults created without a canary: trial-decrypt an existing record
        for raw in self._store.get_all(NOTES):
            try:
                record = EncryptedRecord.from_dict(raw)
            except ValueError:
                continue
            try:
                crypto.decrypt_record(candidate, record)
            except DecryptionFailed:
                return False
            self._store.put(SETTINGS, PASSWORD_CHECK_KEY, crypto.make_password_check(candidate))
            logger.info("Password check added to existing vault")
            return True

        # Nothing to verify against; accept the key optimistically
        logger.warning("Unlocked a vault with no records and no password check")
        return True
