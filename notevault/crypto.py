"""
Encryption module for NoteVault.

Key derivation:
    PBKDF2-HMAC-SHA256 over the master password and a 16-byte random salt,
    100,000 iterations by default, 32-byte (AES-256) output.

Record encryption:
    AES-256-GCM with a fresh 16-byte random iv for every call. GCM is
    authenticated, so a wrong key or a tampered record is always rejected
    instead of being guessed from padding.

Text encodings (fixed for storage, encryption and backups alike):
    - salt and iv: lowercase hex
    - ciphertext: standard base64 of the GCM output (ciphertext || tag)

Reference: OWASP Cryptographic Storage Cheat Sheet
"""

import os
import json
import base64
import binascii

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from flask import current_app, has_app_context

from notevault.errors import EncryptionFailed, DecryptionFailed
from notevault.models import Note, EncryptedRecord

SALT_LENGTH = 16
IV_LENGTH = 16
KEY_LENGTH = 32  # AES-256
DEFAULT_KDF_ITERATIONS = 100_000

# Known plaintext stored encrypted at setup; decrypting it proves the password
PASSWORD_CHECK_PLAINTEXT = b'notevault:password-check:v1'


def get_kdf_iterations() -> int:
    """
    Get the PBKDF2 iteration count from configuration.

    Falls back to the KDF_ITERATIONS environment variable, then to the
    built-in default, when no app context is available.
    """
    if has_app_context():
        value = current_app.config.get('KDF_ITERATIONS', DEFAULT_KDF_ITERATIONS)
    else:
        value = os.environ.get('KDF_ITERATIONS', DEFAULT_KDF_ITERATIONS)
    return int(value)


def generate_salt() -> bytes:
    """Generate a new per-vault salt from the OS CSPRNG."""
    return os.urandom(SALT_LENGTH)


def salt_to_hex(salt: bytes) -> str:
    return salt.hex()


def salt_from_hex(value: str) -> bytes:
    """
    Parse a stored salt.

    Raises:
        ValueError: If value is not hex or not SALT_LENGTH bytes long
    """
    salt = bytes.fromhex(value)
    if len(salt) != SALT_LENGTH:
        raise ValueError(f"Salt must be {SALT_LENGTH} bytes, got {len(salt)}")
    return salt


def derive_key(password: str, salt: bytes, iterations: int = None) -> bytes:
    """
    Derive the 256-bit session key from a password and salt.

    Deterministic: the same (password, salt, iterations) always yields the
    same key, which is what lets unlock reproduce the setup key.

    Args:
        password: Master password as entered by the user
        salt: SALT_LENGTH random bytes
        iterations: PBKDF2 rounds (if None, will be fetched from config)

    Raises:
        ValueError: If salt has the wrong length (a programming error)
    """
    if len(salt) != SALT_LENGTH:
        raise ValueError(f"Salt must be {SALT_LENGTH} bytes, got {len(salt)}")
    if iterations is None:
        iterations = get_kdf_iterations()

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=bytes(salt),
        iterations=iterations,
    )
    return kdf.derive(password.encode('utf-8'))


def seal(key, plaintext: bytes) -> tuple[str, str]:
    """
    Encrypt raw bytes under the session key.

    Returns:
        Tuple of (ciphertext_base64, iv_hex)

    Raises:
        EncryptionFailed: If no key is set
    """
    if not key:
        raise EncryptionFailed("Encryption key not set - unlock the vault first")

    # A fresh iv on every call, even when re-saving the same note
    iv = os.urandom(IV_LENGTH)
    aesgcm = AESGCM(bytes(key))
    ciphertext = aesgcm.encrypt(iv, plaintext, None)

    return base64.b64encode(ciphertext).decode('ascii'), iv.hex()


def open_sealed(key, ciphertext_base64: str, iv_hex: str) -> bytes:
    """
    Decrypt raw bytes produced by seal().

    Raises:
        DecryptionFailed: If the key is unset, the encodings are invalid,
            or authentication fails (wrong key or corrupted data)
    """
    if not key:
        raise DecryptionFailed("Encryption key not set - unlock the vault first")

    try:
        ciphertext = base64.b64decode(ciphertext_base64, validate=True)
        iv = bytes.fromhex(iv_hex)
    except (binascii.Error, ValueError, TypeError) as e:
        raise DecryptionFailed(f"Malformed record encoding: {e}")

    if len(iv) != IV_LENGTH:
        raise DecryptionFailed(f"IV must be {IV_LENGTH} bytes, got {len(iv)}")

    try:
        return AESGCM(bytes(key)).decrypt(iv, ciphertext, None)
    except InvalidTag:
        raise DecryptionFailed(
            "Failed to decrypt data - incorrect password or corrupted data"
        )


def serialize_note(note: Note) -> bytes:
    """Canonical byte encoding of a note: compact, key-sorted UTF-8 JSON."""
    return json.dumps(
        note.to_dict(),
        ensure_ascii=False,
        separators=(',', ':'),
        sort_keys=True,
    ).encode('utf-8')


def encrypt_note(key, note: Note) -> tuple[str, str]:
    """
    Encrypt a whole note.

    Returns:
        Tuple of (ciphertext_base64, iv_hex)

    Raises:
        EncryptionFailed: If no key is set or the note cannot be serialized
    """
    if not key:
        raise EncryptionFailed("Encryption key not set - unlock the vault first")
    if not isinstance(note, Note):
        raise EncryptionFailed(f"Expected a Note, got {type(note).__name__}")

    try:
        payload = serialize_note(note)
    except (TypeError, ValueError) as e:
        raise EncryptionFailed(f"Failed to serialize note: {e}")

    return seal(key, payload)


def decrypt_note(key, ciphertext_base64: str, iv_hex: str) -> Note:
    """
    Decrypt a note encrypted by encrypt_note().

    Raises:
        DecryptionFailed: If decryption fails or the plaintext is not a
            valid note payload
    """
    plaintext = open_sealed(key, ciphertext_base64, iv_hex)

    try:
        return Note.from_dict(json.loads(plaintext.decode('utf-8')))
    except (UnicodeDecodeError, ValueError) as e:
        # json.JSONDecodeError is a ValueError too
        raise DecryptionFailed(f"Decrypted data is not a valid note: {e}")


def encrypt_record(key, note: Note) -> EncryptedRecord:
    """Encrypt a note into the record persisted under its id."""
    ciphertext, iv = encrypt_note(key, note)
    return EncryptedRecord(
        id=note.id,
        ciphertext=ciphertext,
        iv=iv,
        timestamp=note.modified,
    )


def decrypt_record(key, record: EncryptedRecord) -> Note:
    """
    Decrypt a stored record and check it holds the note it is filed under.

    Raises:
        DecryptionFailed: As decrypt_note(), or if the ids disagree
    """
    note = decrypt_note(key, record.ciphertext, record.iv)
    if note.id != record.id:
        raise DecryptionFailed(
            f"Record {record.id} contains note {note.id}"
        )
    return note


def make_password_check(key) -> str:
    """Encrypt the known-plaintext canary; returns its JSON storage form."""
    ciphertext, iv = seal(key, PASSWORD_CHECK_PLAINTEXT)
    return json.dumps({'encryptedData': ciphertext, 'iv': iv})


def verify_password_check(key, stored: str) -> bool:
    """
    Check a candidate key against the stored canary.

    Raises:
        DecryptionFailed: If the canary itself is unreadable
    """
    try:
        data = json.loads(stored)
        ciphertext, iv = data['encryptedData'], data['iv']
    except (ValueError, KeyError, TypeError) as e:
        raise DecryptionFailed(f"Corrupted password check: {e}")

    try:
        plaintext = open_sealed(key, ciphertext, iv)
    except DecryptionFailed:
        return False
    return plaintext == PASSWORD_CHECK_PLAINTEXT
