"""
Tests for key derivation and record encryption.

Run tests with: pytest tests/test_crypto.py -v
"""

import base64
import json
import os

import pytest

from notevault import crypto
from notevault.errors import EncryptionFailed, DecryptionFailed, VaultError
from notevault.models import Note, EncryptedRecord

ITERATIONS = 1000
FIXED_SALT = bytes(range(1, 17))


@pytest.fixture(scope='module')
def key():
    return crypto.derive_key('correct-horse', FIXED_SALT, ITERATIONS)


@pytest.fixture
def note():
    return Note(
        id='note-1',
        title='A',
        content='B',
        tags=[],
        is_pinned=False,
        is_archived=False,
        created=1000,
        modified=1000,
    )


class TestKeyDerivation:
    """PBKDF2 key derivation and salts."""

    def test_derivation_is_deterministic(self):
        first = crypto.derive_key('correct-horse', FIXED_SALT, ITERATIONS)
        second = crypto.derive_key('correct-horse', FIXED_SALT, ITERATIONS)
        assert first == second

    def test_key_is_256_bits(self, key):
        assert len(key) == 32

    def test_password_and_salt_both_matter(self, key):
        other_salt = bytes(range(2, 18))
        assert crypto.derive_key('wrong-password', FIXED_SALT, ITERATIONS) != key
        assert crypto.derive_key('correct-horse', other_salt, ITERATIONS) != key

    def test_iteration_count_matters(self, key):
        assert crypto.derive_key('correct-horse', FIXED_SALT, ITERATIONS + 1) != key

    def test_wrong_salt_length_is_rejected(self):
        with pytest.raises(ValueError):
            crypto.derive_key('correct-horse', b'short', ITERATIONS)

    def test_generated_salts_are_random(self):
        salts = {crypto.generate_salt() for _ in range(50)}
        assert len(salts) == 50
        assert all(len(salt) == crypto.SALT_LENGTH for salt in salts)

    def test_salt_hex_form(self):
        assert crypto.salt_to_hex(FIXED_SALT) == '0102030405060708090a0b0c0d0e0f10'
        assert crypto.salt_from_hex('0102030405060708090a0b0c0d0e0f10') == FIXED_SALT

    @pytest.mark.parametrize('value', ['', 'zz' * 16, '01' * 15, '01' * 17])
    def test_bad_salt_hex_is_rejected(self, value):
        with pytest.raises(ValueError):
            crypto.salt_from_hex(value)

    def test_iterations_come_from_app_config(self, app):
        assert crypto.get_kdf_iterations() == app.config['KDF_ITERATIONS']

    def test_default_iterations_outside_app(self, monkeypatch):
        monkeypatch.delenv('KDF_ITERATIONS', raising=False)
        assert crypto.get_kdf_iterations() == crypto.DEFAULT_KDF_ITERATIONS


class TestRecordCipher:
    """AES-GCM encryption of whole notes."""

    def test_known_note_round_trip(self, key, note):
        ciphertext, iv = crypto.encrypt_note(key, note)
        assert crypto.decrypt_note(key, ciphertext, iv) == note

    def test_wrong_password_fails(self, key, note):
        ciphertext, iv = crypto.encrypt_note(key, note)
        wrong_key = crypto.derive_key('wrong-password', FIXED_SALT, ITERATIONS)

        with pytest.raises(DecryptionFailed):
            crypto.decrypt_note(wrong_key, ciphertext, iv)

    def test_random_wrong_keys_always_fail(self, key, note):
        ciphertext, iv = crypto.encrypt_note(key, note)
        for _ in range(50):
            with pytest.raises(DecryptionFailed):
                crypto.decrypt_note(os.urandom(32), ciphertext, iv)

    def test_fresh_iv_for_every_encryption(self, key, note):
        ivs = {crypto.encrypt_note(key, note)[1] for _ in range(200)}
        assert len(ivs) == 200

    def test_encodings(self, key, note):
        ciphertext, iv = crypto.encrypt_note(key, note)

        assert len(iv) == 2 * crypto.IV_LENGTH
        assert iv == iv.lower()
        bytes.fromhex(iv)
        base64.b64decode(ciphertext, validate=True)

    def test_plaintext_not_in_ciphertext(self, key):
        secret = Note.new(title='bank', content='PIN is 4321', timestamp=5)
        ciphertext, _ = crypto.encrypt_note(key, secret)
        raw = base64.b64decode(ciphertext)
        assert b'4321' not in raw
        assert b'bank' not in raw

    def test_unicode_round_trip(self, key):
        original = Note.new(
            title='Café ☕',
            content='line one\nline two – 日本語',
            tags=['ü', 'tag two'],
            timestamp=42,
        )
        ciphertext, iv = crypto.encrypt_note(key, original)
        assert crypto.decrypt_note(key, ciphertext, iv) == original

    def test_tampered_ciphertext_is_rejected(self, key, note):
        ciphertext, iv = crypto.encrypt_note(key, note)
        raw = bytearray(base64.b64decode(ciphertext))
        raw[0] ^= 0x01
        tampered = base64.b64encode(bytes(raw)).decode('ascii')

        with pytest.raises(DecryptionFailed):
            crypto.decrypt_note(key, tampered, iv)

    def test_swapped_iv_is_rejected(self, key, note):
        ciphertext, _ = crypto.encrypt_note(key, note)
        _, other_iv = crypto.encrypt_note(key, note)

        with pytest.raises(DecryptionFailed):
            crypto.decrypt_note(key, ciphertext, other_iv)

    @pytest.mark.parametrize('ciphertext, iv', [
        ('not base64!!', '00' * 16),
        ('AAAA', 'not hex'),
        ('AAAA', '00' * 12),
    ])
    def test_malformed_encoding_is_rejected(self, key, ciphertext, iv):
        with pytest.raises(DecryptionFailed):
            crypto.decrypt_note(key, ciphertext, iv)

    def test_encrypt_without_key(self, note):
        with pytest.raises(EncryptionFailed):
            crypto.encrypt_note(None, note)
        with pytest.raises(EncryptionFailed):
            crypto.encrypt_note(b'', note)

    def test_decrypt_without_key(self, key, note):
        ciphertext, iv = crypto.encrypt_note(key, note)
        with pytest.raises(DecryptionFailed):
            crypto.decrypt_note(None, ciphertext, iv)

    def test_only_notes_can_be_encrypted(self, key):
        with pytest.raises(EncryptionFailed):
            crypto.encrypt_note(key, {'title': 'A'})

    def test_unserializable_note_is_rejected(self, key, note):
        note.tags = [object()]
        with pytest.raises(EncryptionFailed):
            crypto.encrypt_note(key, note)

    def test_non_note_plaintext_is_rejected(self, key):
        ciphertext, iv = crypto.seal(key, b'{"just": "json"}')
        with pytest.raises(DecryptionFailed):
            crypto.decrypt_note(key, ciphertext, iv)

        ciphertext, iv = crypto.seal(key, b'\xff\xfe not utf-8')
        with pytest.raises(DecryptionFailed):
            crypto.decrypt_note(key, ciphertext, iv)

    def test_errors_are_vault_errors(self):
        assert issubclass(EncryptionFailed, VaultError)
        assert issubclass(DecryptionFailed, ValueError)


class TestCanonicalEncoding:

    def test_serialization_is_sorted_and_compact(self, note):
        payload = crypto.serialize_note(note)
        assert payload.startswith(b'{"content":"B","created":1000,"id":"note-1"')
        assert b' ' not in payload
        assert json.loads(payload) == note.to_dict()

    def test_tag_order_survives(self, key):
        original = Note.new(tags=['zeta', 'alpha', 'mid'], timestamp=1)
        ciphertext, iv = crypto.encrypt_note(key, original)
        assert crypto.decrypt_note(key, ciphertext, iv).tags == ['zeta', 'alpha', 'mid']


class TestRecords:

    def test_record_mirrors_note(self, key, note):
        record = crypto.encrypt_record(key, note)
        assert record.id == note.id
        assert record.timestamp == note.modified
        assert crypto.decrypt_record(key, record) == note

    def test_record_filed_under_other_id_is_rejected(self, key, note):
        record = crypto.encrypt_record(key, note)
        moved = EncryptedRecord(
            id='note-2',
            ciphertext=record.ciphertext,
            iv=record.iv,
            timestamp=record.timestamp,
        )
        with pytest.raises(DecryptionFailed):
            crypto.decrypt_record(key, moved)

    def test_record_dict_form(self, key, note):
        record = crypto.encrypt_record(key, note)
        data = record.to_dict()
        assert set(data) == {'id', 'encryptedData', 'iv', 'timestamp'}
        assert EncryptedRecord.from_dict(data) == record


class TestPasswordCheck:
    """Known-plaintext canary used to verify passwords at unlock."""

    def test_canary_accepts_its_own_key(self, key):
        stored = crypto.make_password_check(key)
        assert crypto.verify_password_check(key, stored) is True

    def test_canary_rejects_other_key(self, key):
        stored = crypto.make_password_check(key)
        other = crypto.derive_key('wrong-password', FIXED_SALT, ITERATIONS)
        assert crypto.verify_password_check(other, stored) is False

    def test_canary_holds_no_password_material(self, key):
        stored = crypto.make_password_check(key)
        assert 'correct-horse' not in stored
        assert set(json.loads(stored)) == {'encryptedData', 'iv'}

    @pytest.mark.parametrize('stored', ['not json', '{}', '[]'])
    def test_corrupted_canary_raises(self, key, stored):
        with pytest.raises(DecryptionFailed):
            crypto.verify_password_check(key, stored)
