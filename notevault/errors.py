"""
Error taxonomy for the NoteVault encryption/session layer.

Every failure raised by the core is a VaultError so callers (the HTTP
layer, scripts) can present it as a recoverable result. VaultError is a
ValueError because that is what the crypto helpers have always raised.
"""


class VaultError(ValueError):
    """Base class for all NoteVault failures."""


class EncryptionFailed(VaultError):
    """No session key is set, or a note could not be serialized."""


class DecryptionFailed(VaultError):
    """Ciphertext failed authentication or did not parse as a note."""


class IncorrectPassword(VaultError):
    """Unlock was attempted with a password that does not open the vault."""


class InvalidBackupFormat(VaultError):
    """A backup document is malformed or from an unsupported version."""


class StorageUnavailable(VaultError):
    """The persistence backend failed or could not be opened."""


class VaultStateError(VaultError):
    """An operation is not valid in the current session state."""
