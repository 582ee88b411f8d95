"""
Audit logging module for NoteVault.

Provides structured logging of security events (vault setup, unlock
attempts, locks, note and backup operations) plus an HTTP access log.
Nothing logged here ever contains a password, key or note plaintext;
notes are referred to by id only.

Reference: OWASP A09:2021 - Security Logging and Monitoring Failures
"""

import os
import logging
import time
from datetime import datetime
from flask import current_app, request, has_app_context, has_request_context, g


WARNING_EVENTS = {
    'UNLOCK_FAILURE',
    'UNLOCK_LOCKOUT',
    'RATE_LIMIT_EXCEEDED',
    'RECORD_SKIPPED',
    'VAULT_WIPED',
}


def _config_value(name, default):
    """Read a setting from the app config, or the environment outside an app."""
    if has_app_context():
        return current_app.config.get(name, default)
    return os.environ.get(name, default)


def _enabled(name):
    value = _config_value(name, True)
    if isinstance(value, str):
        return value.lower() == 'true'
    return bool(value)


def _build_logger(name, file_setting, level_setting, default_file, formatter):
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    log_file = _config_value(file_setting, default_file)
    log_level = _config_value(level_setting, 'INFO')

    if not log_file:
        # Logging to file disabled (e.g. tests); records still propagate
        logger.addHandler(logging.NullHandler())
        return logger

    # Create logs directory if it doesn't exist
    log_dir = os.path.dirname(log_file)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir, exist_ok=True)

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(getattr(logging, str(log_level).upper(), logging.INFO))
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    return logger


def setup_audit_logger():
    """
    Set up the audit logger with file handler.

    Returns:
        Configured logger instance
    """
    formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    return _build_logger(
        'security_audit', 'AUDIT_LOG_FILE', 'AUDIT_LOG_LEVEL',
        'logs/security_audit.log', formatter
    )


def setup_access_logger():
    """
    Set up the access logger with file handler for HTTP access logs.

    Returns:
        Configured logger instance
    """
    first_setup = not logging.getLogger('access').handlers
    logger = _build_logger(
        'access', 'ACCESS_LOG_FILE', 'ACCESS_LOG_LEVEL',
        'logs/access.log', logging.Formatter('%(message)s')
    )

    # Also add console handler for development
    if first_setup and has_app_context() and current_app.config.get('DEBUG', False):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter('%(message)s'))
        logger.addHandler(console_handler)

    return logger


def get_client_ip():
    """Get client IP address from request, handling proxy headers."""
    if not has_request_context():
        return 'local'

    ip = request.headers.get('X-Forwarded-For', request.remote_addr)
    if ip:
        # X-Forwarded-For can contain multiple IPs, take the first one
        return ip.split(',')[0].strip()
    return request.remote_addr or 'unknown'


def log_security_event(event_type, details=None, ip=None):
    """
    Log a security event.

    Args:
        event_type: Type of event (e.g., 'UNLOCK_SUCCESS', 'NOTE_SAVED')
        details: Dictionary with additional event details
        ip: IP address (if not provided, will try to get from request context)

    Event types:
        - VAULT_CREATED: First-time setup completed
        - UNLOCK_SUCCESS / UNLOCK_FAILURE: Unlock attempt outcome
        - UNLOCK_LOCKOUT: Unlock refused by rate limiting
        - RATE_LIMIT_EXCEEDED: Rate limit exceeded (by IP or overall)
        - VAULT_LOCKED: Manual lock
        - AUTO_LOCK: Lock after inactivity
        - NOTE_SAVED / NOTE_DELETED: Note persistence
        - RECORD_SKIPPED: Records that failed to decrypt during a load
        - BACKUP_EXPORTED / BACKUP_IMPORTED: Backup operations
        - VAULT_WIPED: All data erased
    """
    if not _enabled('AUDIT_LOG_ENABLED'):
        return

    logger = setup_audit_logger()

    if ip is None:
        ip = get_client_ip()

    message_parts = [f"EVENT={event_type}", f"IP={ip}"]

    if details:
        # Format details as key=value pairs
        detail_str = " | ".join([f"{k}={v}" for k, v in details.items()])
        if detail_str:
            message_parts.append(f"DETAILS={detail_str}")

    log_message = " | ".join(message_parts)

    if event_type in WARNING_EVENTS:
        logger.warning(log_message)
    else:
        logger.info(log_message)


def log_access(response=None):
    """
    Log HTTP access in a combined-log-like format:

        IP [TIMESTAMP] "METHOD PATH HTTP/VERSION" STATUS SIZE RESPONSE_TIME "USER_AGENT"

    Query strings are left out on purpose: nothing in a request URL should
    end up in a log next to a vault.

    Args:
        response: Flask response object (optional, for after_request hook)
    """
    if not has_request_context():
        return response

    if not _enabled('ACCESS_LOG_ENABLED'):
        return response

    logger = setup_access_logger()

    # Get request start time (set in before_request)
    start_time = getattr(g, 'start_time', None)
    response_time = (time.time() - start_time) * 1000 if start_time else 0

    http_version = request.environ.get('SERVER_PROTOCOL', 'HTTP/1.1')

    if response is not None:
        status_code = response.status_code
        response_size = response.content_length if response.content_length is not None else '-'
    else:
        status_code = '-'
        response_size = '-'

    user_agent = request.headers.get('User-Agent', '-')
    if len(user_agent) > 150:
        user_agent = user_agent[:147] + '...'

    timestamp = datetime.now().strftime('%d/%b/%Y:%H:%M:%S')

    log_parts = [
        get_client_ip(),
        f'[{timestamp}]',
        f'"{request.method} {request.path} {http_version}"',
        str(status_code),
        str(response_size),
        f'{response_time:.2f}ms' if response_time > 0 else '-',
        f'"{user_agent}"'
    ]

    log_message = ' '.join(log_parts)

    # Log at appropriate level based on status code
    if response is not None and status_code >= 500:
        logger.error(log_message)
    elif response is not None and status_code >= 400:
        logger.warning(log_message)
    else:
        logger.info(log_message)

    return response
