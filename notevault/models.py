"""
Data models for NoteVault.

Two kinds of model live here:

- Plain domain objects (Note, EncryptedRecord) that the crypto and session
  layers work with. A Note only ever exists in memory.
- SQLAlchemy tables (RecordEntry, Setting) backing the key-value store.
  Only ciphertext, ivs, timestamps and the public salt reach these tables.
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import List

from flask_sqlalchemy import SQLAlchemy

# Initialize SQLAlchemy - will be bound to app in __init__.py
db = SQLAlchemy()


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


@dataclass
class Note:
    """
    Plaintext note.

    Field names on the wire (the encrypted JSON payload) are camelCase so
    payloads stay readable by any client of the backup format.
    """
    id: str
    title: str = ''
    content: str = ''
    tags: List[str] = field(default_factory=list)
    is_pinned: bool = False
    is_archived: bool = False
    created: int = 0
    modified: int = 0

    @classmethod
    def new(cls, title='', content='', tags=None, timestamp=None):
        """Create a note with a fresh uuid4 id and created == modified."""
        ts = now_ms() if timestamp is None else timestamp
        return cls(
            id=str(uuid.uuid4()),
            title=title,
            content=content,
            tags=list(tags or []),
            created=ts,
            modified=ts,
        )

    def with_changes(self, timestamp=None, **changes):
        """
        Return a copy with the given fields changed and `modified` bumped.

        The id and creation time can never be changed this way.
        """
        if 'id' in changes or 'created' in changes:
            raise ValueError("Note id and creation time are immutable")
        ts = now_ms() if timestamp is None else timestamp
        return replace(self, modified=max(ts, self.created), **changes)

    def toggle_pin(self, timestamp=None):
        return self.with_changes(is_pinned=not self.is_pinned, timestamp=timestamp)

    def toggle_archive(self, timestamp=None):
        return self.with_changes(is_archived=not self.is_archived, timestamp=timestamp)

    def add_tag(self, tag, timestamp=None):
        """Append a tag, keeping insertion order. Blank tags are ignored."""
        tag = (tag or '').strip()
        if not tag:
            return self
        return self.with_changes(tags=self.tags + [tag], timestamp=timestamp)

    def remove_tag(self, index, timestamp=None):
        """Remove the tag at `index`."""
        tags = [t for i, t in enumerate(self.tags) if i != index]
        return self.with_changes(tags=tags, timestamp=timestamp)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'title': self.title,
            'content': self.content,
            'tags': list(self.tags),
            'isPinned': self.is_pinned,
            'isArchived': self.is_archived,
            'created': self.created,
            'modified': self.modified,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Note':
        """
        Build a Note from its wire dictionary.

        Raises:
            ValueError: If a field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise ValueError("Note payload must be an object")

        try:
            note = cls(
                id=data['id'],
                title=data['title'],
                content=data['content'],
                tags=data['tags'],
                is_pinned=data['isPinned'],
                is_archived=data['isArchived'],
                created=data['created'],
                modified=data['modified'],
            )
        except KeyError as e:
            raise ValueError(f"Note payload missing field {e}")

        if not isinstance(note.id, str) or not note.id:
            raise ValueError("Note id must be a non-empty string")
        if not isinstance(note.title, str) or not isinstance(note.content, str):
            raise ValueError("Note title and content must be strings")
        if not isinstance(note.tags, list) or not all(isinstance(t, str) for t in note.tags):
            raise ValueError("Note tags must be a list of strings")
        if not isinstance(note.is_pinned, bool) or not isinstance(note.is_archived, bool):
            raise ValueError("Note flags must be booleans")
        for ts in (note.created, note.modified):
            if isinstance(ts, bool) or not isinstance(ts, int):
                raise ValueError("Note timestamps must be integers")
        return note


@dataclass(frozen=True)
class EncryptedRecord:
    """
    Persisted form of a Note.

    ciphertext is base64 text, iv is hex text; see crypto.py for the
    exact encodings.
    """
    id: str
    ciphertext: str
    iv: str
    timestamp: int

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'encryptedData': self.ciphertext,
            'iv': self.iv,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'EncryptedRecord':
        """
        Raises:
            ValueError: If a field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise ValueError("Record must be an object")
        try:
            record = cls(
                id=data['id'],
                ciphertext=data['encryptedData'],
                iv=data['iv'],
                timestamp=data['timestamp'],
            )
        except KeyError as e:
            raise ValueError(f"Record missing field {e}")

        if not isinstance(record.id, str) or not record.id:
            raise ValueError("Record id must be a non-empty string")
        if not isinstance(record.ciphertext, str) or not isinstance(record.iv, str):
            raise ValueError("Record encryptedData and iv must be strings")
        if isinstance(record.timestamp, bool) or not isinstance(record.timestamp, int):
            raise ValueError("Record timestamp must be an integer")
        return record


class RecordEntry(db.Model):
    """
    Row in the notes namespace.

    Holds ciphertext only; the note title, content and tags are inside
    encrypted_data.
    """
    __tablename__ = 'notes'

    id = db.Column(db.String(64), primary_key=True)
    encrypted_data = db.Column(db.Text, nullable=False)  # base64
    iv = db.Column(db.String(32), nullable=False)  # 16 bytes -> 32 hex chars
    timestamp = db.Column(db.BigInteger, nullable=False, index=True)

    def __repr__(self):
        return f'<RecordEntry {self.id}>'

    def to_record(self) -> EncryptedRecord:
        return EncryptedRecord(
            id=self.id,
            ciphertext=self.encrypted_data,
            iv=self.iv,
            timestamp=self.timestamp,
        )


class Setting(db.Model):
    """Row in the settings namespace (masterSalt, passwordCheck)."""
    __tablename__ = 'settings'

    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.Text, nullable=False)

    def __repr__(self):
        return f'<Setting {self.key}>'


def note_stats(notes) -> dict:
    """Counts shown on the settings screen."""
    notes = list(notes)
    return {
        'total': len(notes),
        'pinned': sum(1 for n in notes if n.is_pinned),
        'archived': sum(1 for n in notes if n.is_archived),
        'active': sum(1 for n in notes if not n.is_archived),
    }


NOTE_VIEWS = ('all', 'pinned', 'archived')


def filter_notes(notes, view='all', query='') -> List[Note]:
    """
    Select the notes shown in a list view.

    Views: 'all' (everything not archived), 'pinned' (pinned and not
    archived), 'archived'. `query` matches title or content, case
    insensitive. Pinned notes come first, then most recently modified.
    """
    if view == 'pinned':
        selected = [n for n in notes if n.is_pinned and not n.is_archived]
    elif view == 'archived':
        selected = [n for n in notes if n.is_archived]
    else:
        selected = [n for n in notes if not n.is_archived]

    if query:
        query = query.lower()
        selected = [
            n for n in selected
            if query in n.title.lower() or query in n.content.lower()
        ]

    return sorted(selected, key=lambda n: (not n.is_pinned, -n.modified))


