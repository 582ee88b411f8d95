"""
Configuration module for NoteVault.
Separates development and production settings for security.

Security Note: All sensitive values should come from environment variables
in production. Never hardcode secrets in source code (OWASP A02:2021).
The master password and the derived key are never configuration: they only
exist in memory while the vault is unlocked.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration with security defaults."""

    # Secret key for session signing (CSRF tokens) - MUST be set in production
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Database configuration - SQLite for simplicity
    # Only ciphertext, ivs, timestamps and the salt are ever written here
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///instance/notevault.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False  # Disable for performance

    # Session cookie settings (OWASP Session Management)
    SESSION_COOKIE_SECURE = False  # Set True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True  # Prevent JS access to session cookie
    SESSION_COOKIE_SAMESITE = 'Lax'  # CSRF protection for cookies

    # CSRF protection enabled by default with Flask-WTF
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = 3600  # 1 hour CSRF token validity

    # Key derivation settings
    KDF_ITERATIONS = int(os.environ.get('KDF_ITERATIONS', 100_000))  # PBKDF2-HMAC-SHA256 rounds

    # Lock the vault after this many minutes without activity (0 disables)
    AUTO_LOCK_MINUTES = int(os.environ.get('AUTO_LOCK_MINUTES', 15))

    # Master password and note limits
    MIN_PASSWORD_LENGTH = 6
    MAX_NOTE_LENGTH = 100000

    # Rate limiting settings
    RATE_LIMIT_MAX_ATTEMPTS = 5  # Maximum unlock attempts allowed
    RATE_LIMIT_WINDOW_SECONDS = 300  # Time window in seconds (5 minutes)
    RATE_LIMIT_PER_IP = True  # Enable IP-based rate limiting

    # Audit logging settings
    AUDIT_LOG_ENABLED = True
    AUDIT_LOG_FILE = 'logs/security_audit.log'
    AUDIT_LOG_LEVEL = 'INFO'

    # Access logging settings
    ACCESS_LOG_ENABLED = True
    ACCESS_LOG_FILE = 'logs/access.log'
    ACCESS_LOG_LEVEL = 'INFO'


class DevelopmentConfig(Config):
    """Development configuration - less strict for testing."""

    DEBUG = True
    TESTING = False

    # In dev, we can use a simpler secret key but still should be random
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-key-not-for-production-123'


class ProductionConfig(Config):
    """Production configuration - maximum security."""

    DEBUG = False
    TESTING = False

    # These MUST be set via environment variables in production
    SECRET_KEY = os.environ.get('SECRET_KEY')

    # Enforce secure cookies in production
    SESSION_COOKIE_SECURE = True

    # Stricter auto-lock in production
    AUTO_LOCK_MINUTES = int(os.environ.get('AUTO_LOCK_MINUTES', 5))


class TestingConfig(Config):
    """Testing configuration for unit tests."""

    TESTING = True
    DEBUG = True

    # Use in-memory SQLite for tests
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    # Disable CSRF for easier testing (be careful with this)
    WTF_CSRF_ENABLED = False

    # Faster key derivation for tests
    KDF_ITERATIONS = 1000

    # Don't write log files from the test suite
    AUDIT_LOG_FILE = ''
    ACCESS_LOG_FILE = ''


# Config dictionary for easy access
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


def get_config():
    """Get configuration based on FLASK_ENV environment variable."""
    env = os.environ.get('FLASK_ENV', 'development')
    return config.get(env, config['default'])
