"""
WTForms definitions for NoteVault.

The HTTP surface speaks JSON; Flask-WTF reads JSON request bodies into
forms the same way it reads form posts, so validation and CSRF checks
work unchanged (send the token in the X-CSRFToken header).
"""

from flask import current_app
from flask_wtf import FlaskForm
from wtforms import StringField, PasswordField, TextAreaField, BooleanField
from wtforms.validators import DataRequired, Length, EqualTo, Optional, ValidationError

from notevault.auth import is_password_acceptable


class SetupForm(FlaskForm):
    """
    First-time setup: choose the master password.

    There is no recovery: a forgotten master password means the notes are
    gone, hence the confirmation field.
    """

    password = PasswordField('Password', validators=[
        DataRequired(message="Password is required")
    ])

    confirm_password = PasswordField('Confirm Password', validators=[
        DataRequired(message="Please confirm your password"),
        EqualTo('password', message="Passwords do not match")
    ])

    def validate_password(self, field):
        ok, error = is_password_acceptable(field.data)
        if not ok:
            raise ValidationError(error)


class UnlockForm(FlaskForm):
    """Unlock an existing vault."""

    password = PasswordField('Password', validators=[
        DataRequired(message="Password is required")
    ])


class NoteForm(FlaskForm):
    """
    Create or edit a note.

    Tags arrive as a JSON list and are validated in the route; this form
    covers the scalar fields.
    """

    title = StringField('Title', validators=[
        Optional(),
        Length(max=200, message="Title must be at most 200 characters")
    ])

    content = TextAreaField('Content', validators=[
        Optional(),
    ])

    is_pinned = BooleanField('Pinned')

    is_archived = BooleanField('Archived')

    def validate_content(self, field):
        max_length = current_app.config.get('MAX_NOTE_LENGTH', 100000)
        if field.data and len(field.data) > max_length:
            raise ValidationError(f"Content must be at most {max_length} characters")


class ImportBackupForm(FlaskForm):
    """
    Import a backup document.

    The password is only needed for backups made by a different vault.
    """

    document = TextAreaField('Backup', validators=[
        DataRequired(message="Backup document is required")
    ])

    password = PasswordField('Backup Password', validators=[Optional()])


class ConfirmForm(FlaskForm):
    """
    Re-enter the master password before a destructive action (wipe).
    """

    password = PasswordField('Password', validators=[
        DataRequired(message="Password is required")
    ])
