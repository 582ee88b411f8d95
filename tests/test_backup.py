"""
Tests for the backup document format and its validation.
"""

import json

import pytest

from notevault import crypto
from notevault.backup import (
    BACKUP_VERSION, export_backup, import_backup, decrypt_backup,
)
from notevault.errors import IncorrectPassword, InvalidBackupFormat, VaultError
from notevault.models import Note, EncryptedRecord

PASSWORD = 'backup password'
SALT = bytes(range(1, 17))
SALT_HEX = '0102030405060708090a0b0c0d0e0f10'


@pytest.fixture(scope='module')
def key():
    return crypto.derive_key(PASSWORD, SALT, 1000)


@pytest.fixture
def notes():
    return [
        Note.new(title='First', content='one', timestamp=1000),
        Note.new(title='Second', content='two', tags=['x'], timestamp=2000),
    ]


@pytest.fixture
def records(key, notes):
    return [crypto.encrypt_record(key, note) for note in notes]


def valid_document(**overrides):
    data = {'version': 1, 'timestamp': 5, 'salt': SALT_HEX, 'notes': []}
    data.update(overrides)
    return json.dumps(data)


class TestExport:

    def test_document_layout(self, records):
        document = export_backup(SALT, records, timestamp=1234)
        data = json.loads(document)

        assert data == {
            'version': BACKUP_VERSION,
            'timestamp': 1234,
            'salt': SALT_HEX,
            'notes': [record.to_dict() for record in records],
        }

    def test_document_is_indented_json(self, records):
        document = export_backup(SALT, records, timestamp=1)
        assert '\n  "version": 1' in document

    def test_export_timestamp_defaults_to_now(self, records):
        data = json.loads(export_backup(SALT, records))
        assert data['timestamp'] > 1_600_000_000_000

    def test_export_carries_ciphertext_only(self, records):
        document = export_backup(SALT, records)
        assert 'First' not in document
        assert PASSWORD not in document

    def test_record_order_is_kept(self, records):
        data = json.loads(export_backup(SALT, list(reversed(records))))
        assert [n['id'] for n in data['notes']] == [r.id for r in reversed(records)]


class TestImport:

    def test_export_import_round_trip(self, records):
        backup = import_backup(export_backup(SALT, records, timestamp=99))

        assert backup.records == records
        assert backup.salt == SALT
        assert backup.version == 1
        assert backup.timestamp == 99

    def test_bytes_document(self, records):
        document = export_backup(SALT, records).encode('utf-8')
        assert import_backup(document).records == records

    def test_empty_backup(self):
        backup = import_backup(valid_document())
        assert backup.records == []

    def test_missing_timestamp_is_tolerated(self):
        data = json.loads(valid_document())
        del data['timestamp']
        assert import_backup(json.dumps(data)).timestamp == 0

    @pytest.mark.parametrize('document', [
        '',
        'not json',
        b'\xff\xfe',
        '[]',
        '"a string"',
        '{}',
        json.dumps({'salt': SALT_HEX, 'notes': []}),
        valid_document(version=None),
        valid_document(version='1'),
        valid_document(version=True),
        valid_document(version=0),
        valid_document(notes=None),
        valid_document(notes={'id': 'x'}),
        valid_document(salt=None),
        valid_document(salt='xyz'),
        valid_document(salt='0102'),
        valid_document(timestamp='yesterday'),
        valid_document(notes=[{'id': 'x'}]),
        valid_document(notes=['record']),
        valid_document(notes=[{'id': 'x', 'encryptedData': 'AA', 'iv': '00', 'timestamp': '1'}]),
        valid_document(notes=[{'id': '', 'encryptedData': 'AA', 'iv': '00', 'timestamp': 1}]),
    ])
    def test_malformed_documents_are_rejected(self, document):
        with pytest.raises(InvalidBackupFormat):
            import_backup(document)

    def test_future_version_is_rejected(self):
        with pytest.raises(InvalidBackupFormat, match='Unsupported backup version'):
            import_backup(valid_document(version=BACKUP_VERSION + 1))

    def test_bad_record_position_is_reported(self, records):
        data = json.loads(export_backup(SALT, records))
        data['notes'][1]['timestamp'] = 'soon'

        with pytest.raises(InvalidBackupFormat, match='position 1'):
            import_backup(json.dumps(data))

    def test_invalid_format_is_a_vault_error(self):
        assert issubclass(InvalidBackupFormat, VaultError)
        assert issubclass(InvalidBackupFormat, ValueError)


class TestDecryptBackup:
    """Opening a backup with nothing but its password."""

    def test_password_opens_backup(self, records, notes):
        backup = import_backup(export_backup(SALT, records))
        assert decrypt_backup(backup, PASSWORD, iterations=1000) == notes

    def test_wrong_password(self, records):
        backup = import_backup(export_backup(SALT, records))
        with pytest.raises(IncorrectPassword):
            decrypt_backup(backup, 'wrong-password', iterations=1000)

    def test_empty_backup_opens_with_any_password(self):
        backup = import_backup(valid_document())
        assert decrypt_backup(backup, 'anything', iterations=1000) == []

    def test_corrupt_record_is_skipped(self, records, notes, caplog):
        good, bad = records
        broken = EncryptedRecord(id=bad.id, ciphertext=good.ciphertext, iv=bad.iv,
                                 timestamp=bad.timestamp)
        backup = import_backup(export_backup(SALT, [good, broken]))

        assert decrypt_backup(backup, PASSWORD, iterations=1000) == [notes[0]]
        assert bad.id in caplog.text
