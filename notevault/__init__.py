"""
Flask Application Factory for NoteVault.

This module creates and configures the Flask application instance.
Uses the factory pattern for better testing and configuration management.

Each application owns exactly one vault session:

    app.extensions['notevault'] = {
        'kv': SQLAlchemyStore,
        'session': SessionManager,
        'notes': NoteRecordStore,
    }

Security configurations applied here:
- HTTP security headers
- CSRF protection initialization
- Inactivity auto-lock of the vault session
"""

import os
import time
import logging
from flask import Flask, g, request
from flask_wtf.csrf import CSRFProtect
from config import get_config
from notevault.models import db
from notevault.session import SessionManager
from notevault.storage import SQLAlchemyStore
from notevault.store import NoteRecordStore

# Initialize extensions (will be bound to app in create_app)
csrf = CSRFProtect()

# Polling the status must not count as user activity
PASSIVE_ENDPOINTS = {'main.status'}


def create_app(config_class=None):
    """
    Application factory function.

    Args:
        config_class: Configuration class to use (optional)

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__)

    # Load configuration
    if config_class is None:
        config_class = get_config()
    app.config.from_object(config_class)

    # Ensure instance folder exists and fix database path
    instance_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), 'instance')
    os.makedirs(instance_path, exist_ok=True)

    # Override relative SQLite path with absolute path
    db_uri = app.config.get('SQLALCHEMY_DATABASE_URI', '')
    if db_uri == 'sqlite:///instance/notevault.db':
        app.config['SQLALCHEMY_DATABASE_URI'] = f'sqlite:///{instance_path}/notevault.db'

    # Initialize database
    db.init_app(app)

    # Create database tables
    with app.app_context():
        db.create_all()

    # Initialize CSRF protection
    # This automatically protects all forms
    csrf.init_app(app)

    # One vault session per application
    kv = SQLAlchemyStore()
    session = SessionManager(
        kv,
        iterations=app.config.get('KDF_ITERATIONS'),
        auto_lock_seconds=app.config.get('AUTO_LOCK_MINUTES', 15) * 60,
    )
    app.extensions['notevault'] = {
        'kv': kv,
        'session': session,
        'notes': NoteRecordStore(kv, session),
    }

    # Register blueprints
    from notevault.routes import main
    app.register_blueprint(main)

    # Add security headers to all responses
    @app.after_request
    def add_security_headers(response):
        """
        Add security headers to every response.

        These headers provide additional security against various attacks.
        Reference: OWASP Secure Headers Project
        """
        # Prevent clickjacking
        response.headers['X-Frame-Options'] = 'DENY'

        # Prevent MIME type sniffing
        response.headers['X-Content-Type-Options'] = 'nosniff'

        # Referrer policy - don't leak full URL
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'

        # The API serves JSON only; nothing may be loaded or framed
        response.headers['Content-Security-Policy'] = (
            "default-src 'none'; frame-ancestors 'none'"
        )

        # Decrypted notes must never sit in a shared or disk cache
        response.headers['Cache-Control'] = 'no-store'

        # Permissions Policy (formerly Feature Policy)
        response.headers['Permissions-Policy'] = (
            'geolocation=(), microphone=(), camera=()'
        )

        return response

    # Record request start time for response time calculation
    @app.before_request
    def record_start_time():
        """Record request start time for access logging."""
        g.start_time = time.time()

    # The session's idle timer locks the vault on its own; this records it
    def log_auto_lock():
        from notevault.audit_log import log_security_event

        with app.app_context():
            log_security_event('AUTO_LOCK', {
                'idle_minutes': app.config.get('AUTO_LOCK_MINUTES', 15)
            })

    session.add_auto_lock_listener(log_auto_lock)

    @app.before_request
    def enforce_auto_lock():
        """
        Lock the vault if the idle window ran out before its timer fired,
        then count this request as activity.
        """
        session.lock_if_idle()

        if request.endpoint not in PASSIVE_ENDPOINTS:
            session.touch()

    # Enhanced access logging
    @app.after_request
    def log_access_request(response):
        """
        Log HTTP access with enhanced details.
        Replaces default Werkzeug logger with more detailed logging.
        """
        from notevault.audit_log import log_access
        log_access(response)
        return response

    # Disable default Werkzeug logger if access logging is enabled
    if app.config.get('ACCESS_LOG_ENABLED', True):
        # Suppress Werkzeug's default request logging
        werkzeug_logger = logging.getLogger('werkzeug')
        werkzeug_logger.setLevel(logging.ERROR)  # Only show errors, not access logs

    return app
