"""
HTTP routes for NoteVault.

A JSON API over the session and note store. All routes follow the same
rules:

- Anything that reads or writes notes needs an unlocked vault; a locked
  vault answers 423 (raised as EncryptionFailed by the session)
- CSRF protection via Flask-WTF forms (X-CSRFToken header)
- Input sanitization before encryption
- Audit logging of every security-relevant action, by note id only

Reference: OWASP Top 10 2021
"""

import json

from flask import Blueprint, Response, current_app, jsonify, request
from flask_wtf.csrf import generate_csrf

from notevault.audit_log import log_security_event, get_client_ip
from notevault.auth import (
    password_strength, check_rate_limit, record_unlock_attempt, clear_unlock_attempts
)
from notevault.backup import import_backup
from notevault.errors import (
    VaultError, EncryptionFailed, DecryptionFailed, IncorrectPassword,
    InvalidBackupFormat, StorageUnavailable, VaultStateError,
)
from notevault.forms import SetupForm, UnlockForm, NoteForm, ImportBackupForm, ConfirmForm
from notevault.models import Note, NOTE_VIEWS, filter_notes, note_stats, now_ms
from notevault.utils import sanitize_input, sanitize_strict, sanitize_tags

# Create blueprint for main routes
main = Blueprint('main', __name__)


def get_session():
    """The application's SessionManager."""
    return current_app.extensions['notevault']['session']


def get_notes():
    """The application's NoteRecordStore."""
    return current_app.extensions['notevault']['notes']


def validation_error(form):
    return jsonify({'error': 'Validation failed', 'fields': form.errors}), 400


def _tags_from_request():
    """
    Tags come from the JSON body directly; WTForms has no list field.

    Raises:
        ValueError: If tags is present and not a list of strings
    """
    payload = request.get_json(silent=True) or {}
    return sanitize_tags(payload.get('tags'))


# ============================================================================
# SESSION ROUTES
# ============================================================================

@main.route('/status')
def status():
    """Whether a vault exists and whether it is unlocked."""
    session = get_session()
    return jsonify({
        'hasVault': session.has_vault(),
        'state': session.state.value,
        'autoLockMinutes': current_app.config.get('AUTO_LOCK_MINUTES'),
    })


@main.route('/csrf-token')
def csrf_token():
    """Token to send back in the X-CSRFToken header."""
    return jsonify({'csrfToken': generate_csrf()})


@main.route('/password-strength', methods=['POST'])
def check_password_strength():
    """Live strength rating while a master password is being chosen."""
    payload = request.get_json(silent=True) or {}
    password = payload.get('password') or ''
    return jsonify({'strength': password_strength(password)})


@main.route('/setup', methods=['POST'])
def setup():
    """
    First-time setup.

    Security measures:
    - Only possible while no vault (salt) exists
    - Minimum length and confirmation of the master password
    - The password itself is never stored
    """
    form = SetupForm()
    if not form.validate_on_submit():
        return validation_error(form)

    session = get_session()
    session.first_time_setup(form.password.data)

    log_security_event('VAULT_CREATED', ip=get_client_ip())

    return jsonify({
        'state': session.state.value,
        'passwordStrength': password_strength(form.password.data),
    }), 201


@main.route('/unlock', methods=['POST'])
def unlock():
    """
    Unlock the vault.

    Security measures:
    - Rate limiting to slow down online guessing
    - Password verified by decrypting known data, never by a stored hash
    - Generic error message on failure
    """
    client_ip = get_client_ip()

    # Record this attempt up-front so rate limiting can see it
    record_unlock_attempt(client_ip)

    allowed, reason = check_rate_limit(client_ip)
    if not allowed:
        log_security_event('UNLOCK_LOCKOUT', {'reason': reason}, ip=client_ip)
        # Message contains "Too many" so automated tools can detect it
        return jsonify({'error': 'Too many unlock attempts. Please try again in 5 minutes.'}), 429

    form = UnlockForm()
    if not form.validate_on_submit():
        return validation_error(form)

    session = get_session()
    try:
        session.unlock(form.password.data)
    except IncorrectPassword:
        log_security_event('UNLOCK_FAILURE', ip=client_ip)
        raise

    clear_unlock_attempts(client_ip)

    notes, skipped = get_notes().load_all_with_errors()
    log_security_event('UNLOCK_SUCCESS', {'notes': len(notes)}, ip=client_ip)
    if skipped:
        log_security_event('RECORD_SKIPPED', {'note_ids': ','.join(skipped)}, ip=client_ip)

    return jsonify({
        'state': session.state.value,
        'noteCount': len(notes),
        'skipped': skipped,
    })


@main.route('/lock', methods=['POST'])
def lock():
    """Lock the vault. Locking a locked vault is not an error."""
    if get_session().lock():
        log_security_event('VAULT_LOCKED', ip=get_client_ip())
    return jsonify({'state': get_session().state.value})


# ============================================================================
# NOTE ROUTES (unlocked vault required)
# ============================================================================

@main.route('/notes')
def list_notes():
    """
    Decrypted notes for one list view.

    Query parameters: view (all, pinned, archived) and q (search text).
    """
    view = request.args.get('view', 'all')
    if view not in NOTE_VIEWS:
        return jsonify({'error': f"Unknown view: {view}"}), 400

    notes, skipped = get_notes().load_all_with_errors()
    if skipped:
        log_security_event('RECORD_SKIPPED', {'note_ids': ','.join(skipped)})

    selected = filter_notes(notes, view=view, query=request.args.get('q', ''))
    return jsonify({
        'notes': [note.to_dict() for note in selected],
        'skipped': skipped,
    })


@main.route('/notes/stats')
def notes_stats():
    """Total, pinned, archived and active counts."""
    return jsonify(note_stats(get_notes().load_all()))


@main.route('/notes', methods=['POST'])
def create_note():
    """
    Create a new note.

    Security:
    - Unlocked vault required
    - CSRF protection via form
    - Input sanitization before encryption
    """
    get_session().key  # raises while locked

    form = NoteForm()
    if not form.validate_on_submit():
        return validation_error(form)

    try:
        tags = _tags_from_request()
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    note = Note.new(
        title=sanitize_strict(form.title.data or ''),
        content=sanitize_input(form.content.data or ''),
        tags=tags,
    )
    note.is_pinned = form.is_pinned.data
    note.is_archived = form.is_archived.data

    get_notes().save(note)
    log_security_event('NOTE_SAVED', {'note_id': note.id, 'action': 'create'})

    return jsonify(note.to_dict()), 201


@main.route('/notes/<note_id>')
def view_note(note_id):
    """Return one decrypted note."""
    note = get_notes().get(note_id)
    if note is None:
        return jsonify({'error': 'Note not found'}), 404
    return jsonify(note.to_dict())


@main.route('/notes/<note_id>', methods=['PUT'])
def edit_note(note_id):
    """
    Replace the editable fields of a note.

    The id and creation time never change; `modified` is set to now.
    """
    notes = get_notes()
    note = notes.get(note_id)
    if note is None:
        return jsonify({'error': 'Note not found'}), 404

    form = NoteForm()
    if not form.validate_on_submit():
        return validation_error(form)

    try:
        tags = _tags_from_request()
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    updated = note.with_changes(
        title=sanitize_strict(form.title.data or ''),
        content=sanitize_input(form.content.data or ''),
        tags=tags,
        is_pinned=form.is_pinned.data,
        is_archived=form.is_archived.data,
        timestamp=max(now_ms(), note.modified),
    )

    if not notes.save(updated):
        return jsonify({'error': 'A newer version of this note exists'}), 409

    log_security_event('NOTE_SAVED', {'note_id': note_id, 'action': 'update'})
    return jsonify(updated.to_dict())


@main.route('/notes/<note_id>', methods=['DELETE'])
def delete_note(note_id):
    """Delete a note and its encrypted record."""
    get_session().key  # raises while locked

    if not get_notes().delete(note_id):
        return jsonify({'error': 'Note not found'}), 404

    log_security_event('NOTE_DELETED', {'note_id': note_id})
    return '', 204


# ============================================================================
# BACKUP AND DATA MANAGEMENT
# ============================================================================

@main.route('/backup')
def export_backup():
    """
    Download every record, still encrypted, plus the salt.

    The export itself decrypts nothing; the unlocked vault is required only
    so that a passer-by cannot walk away with the ciphertext.
    """
    get_session().key  # raises while locked

    document = get_notes().export_backup()
    log_security_event('BACKUP_EXPORTED')

    return Response(
        document,
        mimetype='application/json',
        headers={
            'Content-Disposition':
                f'attachment; filename=notevault-backup-{now_ms()}.json'
        },
    )


@main.route('/backup/import', methods=['POST'])
def import_backup_route():
    """
    Merge a backup into the vault.

    Newer versions of a note win; records that do not decrypt are skipped.
    """
    get_session().key  # raises while locked

    form = ImportBackupForm()
    if not form.validate_on_submit():
        return validation_error(form)

    document = form.document.data
    if isinstance(document, dict):
        # Backup sent as a nested JSON object rather than as text
        document = json.dumps(document)

    backup = import_backup(document)
    summary = get_notes().merge_backup(backup, password=form.password.data or None)

    log_security_event('BACKUP_IMPORTED', summary)
    return jsonify(summary)


@main.route('/wipe', methods=['POST'])
def wipe():
    """
    Erase every note and the vault itself.

    Requires the unlocked vault and the master password again.
    """
    session = get_session()
    session.key  # raises while locked

    form = ConfirmForm()
    if not form.validate_on_submit():
        return validation_error(form)

    if not session.verify_password(form.password.data):
        log_security_event('UNLOCK_FAILURE', {'action': 'wipe'})
        raise IncorrectPassword("Incorrect password")

    session.wipe()
    clear_unlock_attempts(get_client_ip())
    log_security_event('VAULT_WIPED')

    return jsonify({'hasVault': False, 'state': session.state.value})


# ============================================================================
# ERROR HANDLERS
# ============================================================================

ERROR_STATUS = (
    (IncorrectPassword, 401),
    (EncryptionFailed, 423),
    (InvalidBackupFormat, 400),
    (StorageUnavailable, 503),
    (DecryptionFailed, 422),
    (VaultStateError, 409),
)


@main.app_errorhandler(VaultError)
def vault_error(error):
    """Map the vault error taxonomy onto HTTP status codes."""
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            break
    else:
        status_code = 400

    body = {'error': str(error), 'type': type(error).__name__}
    if isinstance(error, StorageUnavailable):
        # Don't expose database errors to the client
        body['error'] = 'Storage is unavailable. Please try again.'
    return jsonify(body), status_code


@main.app_errorhandler(404)
def not_found_error(error):
    return jsonify({'error': 'Not found'}), 404


@main.app_errorhandler(405)
def method_not_allowed_error(error):
    return jsonify({'error': 'Method not allowed'}), 405


@main.app_errorhandler(500)
def internal_error(error):
    """Handle 500 errors - rollback any failed transactions."""
    from notevault.models import db
    db.session.rollback()
    return jsonify({'error': 'An internal error occurred'}), 500
