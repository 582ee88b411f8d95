"""
Tests for the note model helpers and list views.
"""

import pytest

from notevault.models import Note, filter_notes, note_stats


class TestNoteHelpers:

    def test_new_note(self):
        note = Note.new(title='Hello', tags=['a'], timestamp=500)
        assert note.created == note.modified == 500
        assert note.tags == ['a']
        assert note.id != Note.new().id

    def test_with_changes_bumps_modified(self):
        note = Note.new(title='v1', timestamp=100)
        changed = note.with_changes(title='v2', timestamp=200)

        assert changed.title == 'v2'
        assert changed.modified == 200
        assert changed.created == 100
        assert note.title == 'v1'

    def test_modified_never_precedes_created(self):
        note = Note.new(timestamp=100)
        assert note.with_changes(title='x', timestamp=50).modified == 100

    @pytest.mark.parametrize('field', ['id', 'created'])
    def test_identity_is_immutable(self, field):
        with pytest.raises(ValueError):
            Note.new().with_changes(**{field: 1})

    def test_toggle_pin_and_archive(self):
        note = Note.new(timestamp=100)

        pinned = note.toggle_pin(timestamp=110)
        assert pinned.is_pinned and pinned.modified == 110
        assert not pinned.toggle_pin(timestamp=120).is_pinned

        archived = note.toggle_archive(timestamp=130)
        assert archived.is_archived and not archived.is_pinned

    def test_tags_keep_order(self):
        note = Note.new(tags=['work'], timestamp=100)
        note = note.add_tag(' home ', timestamp=110).add_tag('later', timestamp=120)

        assert note.tags == ['work', 'home', 'later']
        assert note.remove_tag(1, timestamp=130).tags == ['work', 'later']

    def test_blank_tag_is_ignored(self):
        note = Note.new(timestamp=100)
        assert note.add_tag('   ', timestamp=200) is note


class TestListViews:

    @pytest.fixture
    def notes(self):
        return [
            Note.new(title='Recent', content='groceries', timestamp=300),
            Note.new(title='Older', content='Milk and eggs', timestamp=100),
            Note.new(title='Pinned', timestamp=50).toggle_pin(timestamp=50),
            Note.new(title='Gone', content='milk', timestamp=400).toggle_archive(timestamp=400),
        ]

    def titles(self, notes, **kwargs):
        return [n.title for n in filter_notes(notes, **kwargs)]

    def test_all_hides_archived_and_puts_pinned_first(self, notes):
        assert self.titles(notes) == ['Pinned', 'Recent', 'Older']

    def test_pinned_view(self, notes):
        assert self.titles(notes, view='pinned') == ['Pinned']

    def test_archived_view(self, notes):
        assert self.titles(notes, view='archived') == ['Gone']

    def test_search_is_case_insensitive(self, notes):
        assert self.titles(notes, query='MILK') == ['Older']
        assert self.titles(notes, view='archived', query='milk') == ['Gone']
        assert self.titles(notes, query='older') == ['Older']

    def test_stats(self, notes):
        assert note_stats(notes) == {'total': 4, 'pinned': 1, 'archived': 1, 'active': 3}
        assert note_stats([]) == {'total': 0, 'pinned': 0, 'archived': 0, 'active': 0}
